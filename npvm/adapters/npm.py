"""npm backend."""

from __future__ import annotations

from pathlib import Path

import structlog

from npvm.adapters.audit import empty_audit, parse_audit_json
from npvm.adapters.base import (
    InstallOptions,
    PackageManagerAdapter,
    UninstallOptions,
    as_dict,
    build_tree,
    flag_dev_and_peer,
    read_manifest,
)
from npvm.exceptions import ExecutionError, ParseError
from npvm.models import AuditResult, DependencyNode, InstalledPackage, WorkspaceInfo

log = structlog.get_logger("npvm.adapters")


def _packages_from_ls(data: object) -> list[InstalledPackage]:
    deps = as_dict(as_dict(data).get("dependencies"))
    return [
        InstalledPackage(name=name, version=str(as_dict(info).get("version") or "unknown"))
        for name, info in deps.items()
    ]


class NpmAdapter(PackageManagerAdapter):
    type = "npm"
    binary = "npm"

    async def detect_workspace(self, cwd: str | Path) -> WorkspaceInfo:
        manifest = read_manifest(cwd)
        if not manifest.get("workspaces"):
            return WorkspaceInfo(is_workspace=False)
        try:
            data = await self._run_json(["query", ".workspace"], cwd)
        except (ExecutionError, ParseError) as exc:
            log.debug("npm.workspace_query_failed", error=str(exc))
            return WorkspaceInfo(is_workspace=False)
        entries = data if isinstance(data, list) else []
        packages = [w["name"] for w in entries if isinstance(w, dict) and w.get("name")]
        return WorkspaceInfo(is_workspace=True, packages=packages)

    async def get_installed_packages(self, cwd: str | Path) -> list[InstalledPackage]:
        try:
            data = await self._run_json(["ls", "--json", "--depth=0"], cwd)
        except (ExecutionError, ParseError) as exc:
            log.warning("npm.list_failed", cwd=str(cwd), error=str(exc))
            return []
        return flag_dev_and_peer(_packages_from_ls(data), read_manifest(cwd))

    async def get_global_packages(self) -> list[InstalledPackage]:
        try:
            data = await self._run_json(["ls", "-g", "--json", "--depth=0"])
        except (ExecutionError, ParseError) as exc:
            log.warning("npm.global_list_failed", error=str(exc))
            return []
        return _packages_from_ls(data)

    def install_args(self, packages: list[str], options: InstallOptions) -> list[str]:
        args = ["install", *packages]
        if options.dev:
            args.append("--save-dev")
        if options.global_:
            args.append("-g")
        if options.workspace:
            args.append("--include-workspace-root")
        if options.filter:
            args.extend(["-w", options.filter])
        if options.registry:
            args.extend(["--registry", options.registry])
        return args

    def uninstall_args(self, packages: list[str], options: UninstallOptions) -> list[str]:
        args = ["uninstall", *packages]
        if options.global_:
            args.append("-g")
        if options.workspace:
            args.append("--include-workspace-root")
        if options.filter:
            args.extend(["-w", options.filter])
        return args

    async def get_dependency_tree(self, cwd: str | Path) -> DependencyNode:
        try:
            data = await self._run_json(["ls", "--json", "--all"], cwd)
        except (ExecutionError, ParseError) as exc:
            log.warning("npm.tree_failed", cwd=str(cwd), error=str(exc))
            return DependencyNode.empty_root()
        if not isinstance(data, dict):
            return DependencyNode.empty_root()
        return build_tree(
            str(data.get("name") or "root"),
            str(data.get("version") or "0.0.0"),
            data.get("dependencies"),
        )

    async def audit(self, cwd: str | Path) -> AuditResult:
        try:
            stdout = await self._audit_stdout(["npm", "audit", "--json"], cwd)
        except ExecutionError as exc:
            log.warning("npm.audit_failed", cwd=str(cwd), error=str(exc))
            return empty_audit()
        result = parse_audit_json(stdout)
        log.info("npm.audit_done", total=result.summary.total)
        return result
