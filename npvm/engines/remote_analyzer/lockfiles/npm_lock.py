"""Parser for npm package-lock.json / npm-shrinkwrap.json."""

from __future__ import annotations

import json

from npvm.engines.remote_analyzer.lockfiles.registry import ChildCollector, register_parser
from npvm.models import DependencyNode

_NODE_MODULES = "node_modules/"


def direct_dependency_name(path: str) -> str | None:
    """``node_modules/a`` → ``a``; nested (``node_modules/a/node_modules/b``) → None."""
    if not path.startswith(_NODE_MODULES):
        return None
    rest = path[len(_NODE_MODULES):]
    if not rest or _NODE_MODULES in rest or "/node_modules" in rest:
        return None
    return rest


class NpmLockParser:
    lock_type = "npm"
    file_name = "package-lock.json"
    priority = 30

    def parse(self, content: str) -> DependencyNode:
        collected = ChildCollector()
        try:
            lock = json.loads(content)
        except ValueError:
            return collected.root
        if not isinstance(lock, dict):
            return collected.root

        packages = lock.get("packages")
        if isinstance(packages, dict) and packages:
            # lockfileVersion 2+: flat map keyed by install path
            for path, info in packages.items():
                name = direct_dependency_name(path)
                if name is None:
                    continue
                info = info if isinstance(info, dict) else {}
                collected.add(name, str(info.get("version") or "0.0.0"))
            return collected.root

        dependencies = lock.get("dependencies")
        if isinstance(dependencies, dict):
            # lockfileVersion 1: nested map, top level = direct
            for name, info in dependencies.items():
                info = info if isinstance(info, dict) else {}
                collected.add(name, str(info.get("version") or "0.0.0"))
        return collected.root


register_parser(NpmLockParser())
