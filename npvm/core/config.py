"""Settings and the per-request context threaded through adapters and the analyzer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from npvm.models import PackageManagerType

DEFAULT_NPM_REGISTRY = "https://registry.npmjs.org"
DEFAULT_OSV_API = "https://api.osv.dev/v1"
DEFAULT_USER_AGENT = "npvm-remote-analyzer"

# Outbound vulnerability/update checks are capped to this many packages.
MAX_CHECK_PACKAGES = 50


def _env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


@dataclass(frozen=True)
class Settings:
    """Process-wide, read-only configuration. Built once from the environment."""

    npm_registry: str = DEFAULT_NPM_REGISTRY
    osv_api: str = DEFAULT_OSV_API
    github_token: str | None = None
    gitlab_token: str | None = None
    detect_timeout: float = 5.0
    max_check_packages: int = MAX_CHECK_PACKAGES
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            npm_registry=os.environ.get("NPVM_NPM_REGISTRY", DEFAULT_NPM_REGISTRY).rstrip("/"),
            osv_api=os.environ.get("NPVM_OSV_API", DEFAULT_OSV_API).rstrip("/"),
            github_token=os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN"),
            gitlab_token=os.environ.get("GITLAB_TOKEN"),
            detect_timeout=_env_float("NPVM_DETECT_TIMEOUT", 5.0),
            max_check_packages=int(os.environ.get("NPVM_MAX_CHECK_PACKAGES", MAX_CHECK_PACKAGES)),
        )


def is_project_directory(path: Path) -> bool:
    return (path / "package.json").exists() or (path / "node_modules").exists()


@dataclass(frozen=True)
class RequestContext:
    """Which backend, project and registry a single request acts on.

    Replaces server-held "current package manager / registry / project" state:
    every adapter call receives what it needs from here. ``registry`` is a
    per-request override; ``None`` leaves the backend's configured registry alone.
    """

    pm_type: PackageManagerType
    project_path: Path
    registry: str | None = None
    is_global: bool = False

    @classmethod
    def for_path(
        cls,
        path: str | Path,
        pm_type: PackageManagerType = "npm",
        registry: str | None = None,
    ) -> RequestContext:
        """Project mode when *path* looks like a JS project, global mode otherwise."""
        resolved = Path(path).expanduser().resolve()
        return cls(
            pm_type=pm_type,
            project_path=resolved,
            registry=registry,
            is_global=not is_project_directory(resolved),
        )
