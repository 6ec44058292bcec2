"""Package-manager adapters: one uniform contract over npm, yarn, pnpm and bun."""

from npvm.adapters.base import InstallOptions, PackageManagerAdapter, UninstallOptions
from npvm.adapters.registry import AdapterRegistry, create_default_registry

__all__ = [
    "AdapterRegistry",
    "InstallOptions",
    "PackageManagerAdapter",
    "UninstallOptions",
    "create_default_registry",
]
