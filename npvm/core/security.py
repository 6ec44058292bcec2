"""Input validation for anything that ends up in an argv or an outbound URL.

Every check raises :class:`~npvm.exceptions.ValidationError` and must run before
a subprocess is spawned or a request is sent.
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlparse

from npvm.exceptions import ValidationError

# [@scope/]name[@version-spec]
_VALID_PACKAGE_NAME = re.compile(
    r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*(@[a-z0-9^~>=<.*-]+)?$",
    re.IGNORECASE,
)
_VALID_BRANCH_NAME = re.compile(r"^[a-zA-Z0-9._/-]+$")
_DANGEROUS_CHARS = re.compile(r"[;&|`$(){}\[\]<>!#*?\\'\"\s]")
# Version specs legitimately contain <, > and *, so the name part is checked separately.
_DANGEROUS_NAME_CHARS = re.compile(r"[;&|`$(){}\[\]!#?\\'\"\s]")

MAX_PACKAGE_NAME_LENGTH = 214
MAX_PACKAGES_PER_CALL = 100
MAX_BRANCH_LENGTH = 255


def validate_package_name(name: str) -> None:
    if not name or not isinstance(name, str):
        raise ValidationError("package name is required")
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        raise ValidationError("package name too long")
    if name.startswith("-"):
        raise ValidationError(f"invalid package name: {name!r}")
    if _DANGEROUS_NAME_CHARS.search(name):
        raise ValidationError("invalid package name: contains dangerous characters")
    if not _VALID_PACKAGE_NAME.match(name):
        raise ValidationError(f"invalid package name format: {name!r}")


def validate_package_names(packages: list[str]) -> None:
    if not isinstance(packages, list) or not packages:
        raise ValidationError("at least one package name is required")
    if len(packages) > MAX_PACKAGES_PER_CALL:
        raise ValidationError(f"too many packages (max {MAX_PACKAGES_PER_CALL})")
    for pkg in packages:
        validate_package_name(pkg)


def validate_url(url: str) -> None:
    if not url or not isinstance(url, str):
        raise ValidationError("URL is required")
    if _DANGEROUS_CHARS.search(url):
        raise ValidationError("URL contains dangerous characters")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError("only HTTP/HTTPS URLs are allowed")
    if not parsed.netloc:
        raise ValidationError("invalid URL format")


def validate_branch_name(branch: str) -> None:
    if not branch or not isinstance(branch, str):
        raise ValidationError("branch name is required")
    if len(branch) > MAX_BRANCH_LENGTH:
        raise ValidationError("branch name too long")
    if ".." in branch:
        raise ValidationError('branch name cannot contain ".."')
    if branch.startswith("-") or not _VALID_BRANCH_NAME.match(branch):
        raise ValidationError("invalid branch name format")


def validate_path(path: str | Path, extra_roots: list[str | Path] | None = None) -> Path:
    """Resolve *path* and make sure it lives under home, the CWD, /tmp or *extra_roots*."""
    if not path:
        raise ValidationError("path is required")

    resolved = Path(path).expanduser().resolve()
    roots = [Path.home(), Path.cwd(), Path("/tmp"), *(extra_roots or [])]
    for root in roots:
        root_path = Path(root).expanduser().resolve()
        if resolved == root_path or resolved.is_relative_to(root_path):
            return resolved
    raise ValidationError("access denied: path outside allowed directories")


def sanitize_error_message(error: BaseException | str) -> str:
    """First line of the message, with the home directory shortened to ``~``."""
    message = str(error)
    home = str(Path.home())
    if home and home != "/":
        message = message.replace(home, "~")
    return message.split("\n", 1)[0]
