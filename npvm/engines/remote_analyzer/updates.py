"""Compare declared versions with the registry's ``latest`` dist-tag."""

from __future__ import annotations

import asyncio

import structlog

from npvm.engines.remote_analyzer.npm_registry import NpmRegistryClient
from npvm.exceptions import NotFoundError, RemoteError
from npvm.models import RemoteUpdateInfo

log = structlog.get_logger("npvm.remote")


def has_update(current: str, latest: str) -> bool:
    """Known-imprecise rule: inequality plus substring containment.

    This is not a semver range check, so a pinned range such as ``1.x`` is
    reported as outdated even when ``latest`` satisfies it. Kept as one
    function so it can be swapped for a real range test deliberately.
    """
    return latest != current and latest not in current


class UpdateChecker:
    """Look up each package independently; one failed lookup never affects others."""

    def __init__(self, registry: NpmRegistryClient) -> None:
        self._registry = registry

    async def check(self, packages: list[dict[str, str]]) -> list[RemoteUpdateInfo]:
        return list(await asyncio.gather(*(self._check_one(p) for p in packages)))

    async def _check_one(self, pkg: dict[str, str]) -> RemoteUpdateInfo:
        name, current = pkg["name"], pkg["version"]
        try:
            latest = await self._registry.latest_version(name) or current
        except (NotFoundError, RemoteError) as exc:
            log.debug("registry.latest_failed", package=name, error=str(exc))
            return RemoteUpdateInfo(
                name=name, current_version=current, latest_version=current, has_update=False
            )
        return RemoteUpdateInfo(
            name=name,
            current_version=current,
            latest_version=latest,
            has_update=has_update(current, latest),
        )
