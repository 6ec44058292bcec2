"""pnpm backend."""

from __future__ import annotations

from pathlib import Path
from typing import Any

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


def _first_project(data: Any) -> dict[str, Any]:
    """``pnpm ls --json`` prints a list with one entry per project."""
    if isinstance(data, list):
        data = data[0] if data else {}
    return as_dict(data)


def _section(project: dict[str, Any], key: str, *, dev: bool = False) -> list[InstalledPackage]:
    return [
        InstalledPackage(
            name=name,
            version=str(as_dict(info).get("version") or "unknown"),
            is_dev=dev,
        )
        for name, info in as_dict(project.get(key)).items()
    ]


class PnpmAdapter(PackageManagerAdapter):
    type = "pnpm"
    binary = "pnpm"
    label = " with pnpm"

    async def detect_workspace(self, cwd: str | Path) -> WorkspaceInfo:
        if not (Path(cwd) / "pnpm-workspace.yaml").exists():
            return WorkspaceInfo(is_workspace=False)
        try:
            data = await self._run_json(["ls", "-r", "--json", "--depth=-1"], cwd)
        except (ExecutionError, ParseError) as exc:
            log.debug("pnpm.workspace_list_failed", error=str(exc))
            return WorkspaceInfo(is_workspace=True, packages=[])
        root = str(Path(cwd).resolve())
        packages = [
            p["name"]
            for p in (data if isinstance(data, list) else [])
            if isinstance(p, dict) and p.get("name") and p.get("path") != root
        ]
        return WorkspaceInfo(is_workspace=True, packages=packages)

    async def get_installed_packages(self, cwd: str | Path) -> list[InstalledPackage]:
        try:
            project = _first_project(await self._run_json(["ls", "--json", "--depth=0"], cwd))
        except (ExecutionError, ParseError) as exc:
            log.warning("pnpm.list_failed", cwd=str(cwd), error=str(exc))
            return []
        packages = _section(project, "dependencies") + _section(
            project, "devDependencies", dev=True
        )
        return flag_dev_and_peer(packages, read_manifest(cwd))

    async def get_global_packages(self) -> list[InstalledPackage]:
        try:
            project = _first_project(await self._run_json(["ls", "-g", "--json", "--depth=0"]))
        except (ExecutionError, ParseError) as exc:
            log.warning("pnpm.global_list_failed", error=str(exc))
            return []
        return _section(project, "dependencies")

    def install_args(self, packages: list[str], options: InstallOptions) -> list[str]:
        args = ["add", *packages]
        if options.dev:
            args.append("--save-dev")
        if options.global_:
            args.append("-g")
        if options.workspace:
            args.append("-w")
        if options.filter:
            args.extend(["--filter", options.filter])
        if options.registry:
            args.extend(["--registry", options.registry])
        return args

    def uninstall_args(self, packages: list[str], options: UninstallOptions) -> list[str]:
        args = ["remove", *packages]
        if options.global_:
            args.append("-g")
        if options.workspace:
            args.append("-w")
        if options.filter:
            args.extend(["--filter", options.filter])
        return args

    async def get_dependency_tree(self, cwd: str | Path) -> DependencyNode:
        try:
            project = _first_project(
                await self._run_json(["ls", "--json", "--depth=Infinity"], cwd)
            )
        except (ExecutionError, ParseError) as exc:
            log.warning("pnpm.tree_failed", cwd=str(cwd), error=str(exc))
            return DependencyNode.empty_root()
        deps = {
            **as_dict(project.get("dependencies")),
            **as_dict(project.get("devDependencies")),
        }
        return build_tree(
            str(project.get("name") or "root"),
            str(project.get("version") or "0.0.0"),
            deps,
        )

    async def audit(self, cwd: str | Path) -> AuditResult:
        try:
            stdout = await self._audit_stdout(["pnpm", "audit", "--json"], cwd)
        except ExecutionError as exc:
            log.warning("pnpm.audit_failed", cwd=str(cwd), error=str(exc))
            return empty_audit()
        result = parse_audit_json(stdout)
        log.info("pnpm.audit_done", total=result.summary.total)
        return result

    def audit_fix_command(self) -> list[str]:
        return ["pnpm", "audit", "--fix"]
