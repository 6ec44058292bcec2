"""Adapter registry: detect installed backends and resolve one per request."""

from __future__ import annotations

import asyncio

import structlog

from npvm.adapters.base import PackageManagerAdapter
from npvm.core.config import RequestContext
from npvm.exceptions import ValidationError
from npvm.models import PackageManagerInfo, PackageManagerType

log = structlog.get_logger("npvm.adapters")

# Preference order when choosing a default backend.
DEFAULT_ORDER: tuple[PackageManagerType, ...] = ("npm", "yarn", "pnpm", "bun")


class AdapterRegistry:
    """Adapter registration center, keyed by backend type."""

    def __init__(self) -> None:
        self._adapters: dict[str, PackageManagerAdapter] = {}

    def register(self, adapter: PackageManagerAdapter) -> None:
        self._adapters[adapter.type] = adapter
        log.debug("adapter.registered", pm=adapter.type)

    def get(self, pm_type: str) -> PackageManagerAdapter | None:
        return self._adapters.get(pm_type)

    def list_all(self) -> list[PackageManagerAdapter]:
        return list(self._adapters.values())

    def resolve(self, ctx: RequestContext) -> PackageManagerAdapter:
        adapter = self.get(ctx.pm_type)
        if adapter is None:
            raise ValidationError(f"unsupported package manager: {ctx.pm_type!r}")
        return adapter

    async def detect_all(self) -> list[PackageManagerInfo]:
        """Probe every registered backend concurrently; order follows registration."""
        return list(await asyncio.gather(*(a.detect() for a in self._adapters.values())))

    async def select_default(self) -> PackageManagerType:
        """First available backend in :data:`DEFAULT_ORDER`, falling back to npm."""
        infos = {info.type: info for info in await self.detect_all()}
        for pm_type in DEFAULT_ORDER:
            info = infos.get(pm_type)
            if info is not None and info.available:
                log.info("adapter.default_selected", pm=pm_type, version=info.version)
                return pm_type
        log.warning("adapter.none_available", fallback="npm")
        return "npm"


def create_default_registry(*, detect_timeout: float = 5.0) -> AdapterRegistry:
    """Create a registry with all four backends registered."""
    from npvm.adapters.bun import BunAdapter
    from npvm.adapters.npm import NpmAdapter
    from npvm.adapters.pnpm import PnpmAdapter
    from npvm.adapters.yarn import YarnAdapter

    registry = AdapterRegistry()
    for cls in (NpmAdapter, YarnAdapter, PnpmAdapter, BunAdapter):
        registry.register(cls(detect_timeout=detect_timeout))
    return registry
