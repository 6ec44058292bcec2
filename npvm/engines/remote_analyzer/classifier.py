"""Classify free-form input and parse repository URLs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from npvm.exceptions import ValidationError
from npvm.models import RemoteRepoInfo

InputType = Literal["npm-package", "npm-site-url", "git-url"]

# Package-site domains and the registry each one is backed by.
NPM_SITE_REGISTRY_MAP: dict[str, str] = {
    "npmjs.com": "https://registry.npmjs.org",
    "www.npmjs.com": "https://registry.npmjs.org",
    "npmmirror.com": "https://registry.npmmirror.com",
    "npm.taobao.org": "https://registry.npmmirror.com",
    "yarnpkg.com": "https://registry.yarnpkg.com",
}

_SITE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            rf"^https?://{re.escape(domain)}/package/((?:@[^/]+/)?[^/?#]+)"
            r"(?:/v/[^/?#]+)?/?(?:[?#].*)?$",
            re.IGNORECASE,
        ),
        registry,
    )
    for domain, registry in NPM_SITE_REGISTRY_MAP.items()
]

_SSH_PREFIX = re.compile(r"^[\w.-]+@[\w.-]+:")
_PACKAGE_NAME = re.compile(
    r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$", re.IGNORECASE
)

_GIT_URL_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/tree/(.+?))?/?$"), "github"),
    (re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?/?$"), "github"),
    (re.compile(r"^https?://gitlab\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/-/tree/(.+?))?/?$"), "gitlab"),
    (re.compile(r"^git@gitlab\.com:([^/]+)/([^/]+?)(?:\.git)?/?$"), "gitlab"),
]


@dataclass
class ParsedInput:
    type: InputType
    value: str
    registry: str | None = None


def parse_input_type(raw: str) -> ParsedInput:
    """Decide whether *raw* is a package name, a package-site URL or a git URL.

    Site URLs are a subset of generic URLs, so they are matched first.
    Anything unrecognized is treated as a git URL.
    """
    value = raw.strip()

    for pattern, registry in _SITE_PATTERNS:
        m = pattern.match(value)
        if m:
            return ParsedInput(type="npm-site-url", value=m.group(1), registry=registry)

    if value.lower().startswith(("http://", "https://")) or _SSH_PREFIX.match(value):
        return ParsedInput(type="git-url", value=value)

    if _PACKAGE_NAME.match(value):
        return ParsedInput(type="npm-package", value=value)

    return ParsedInput(type="git-url", value=value)


def parse_git_url(url: str) -> RemoteRepoInfo:
    """Extract platform/owner/repo/branch from a GitHub or GitLab URL.

    Handles:
      - https://github.com/owner/repo[.git][/tree/branch]
      - git@github.com:owner/repo.git
      - https://gitlab.com/owner/repo[.git][/-/tree/branch]
      - git@gitlab.com:owner/repo.git
    """
    url = url.strip()
    for pattern, platform in _GIT_URL_PATTERNS:
        m = pattern.match(url)
        if m:
            branch = m.group(3) if m.lastindex and m.lastindex >= 3 else None
            return RemoteRepoInfo(
                platform=platform,  # type: ignore[arg-type]
                owner=m.group(1),
                repo=re.sub(r"\.git$", "", m.group(2)),
                branch=branch or None,
            )
    raise ValidationError(f"invalid Git URL: {url!r}")
