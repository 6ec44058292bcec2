"""Yarn (classic) backend. Its listing and audit commands emit NDJSON records."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import structlog

from npvm.adapters.audit import empty_audit, parse_yarn_audit
from npvm.adapters.base import (
    InstallOptions,
    PackageManagerAdapter,
    UninstallOptions,
    as_dict,
    flag_dev_and_peer,
    read_manifest,
)
from npvm.adapters.process import run_command
from npvm.exceptions import ExecutionError
from npvm.models import AuditResult, DependencyNode, InstalledPackage, WorkspaceInfo

log = structlog.get_logger("npvm.adapters")

# "name@version" where name may itself start with "@scope/"
_NAME_AT_VERSION = re.compile(r"^(.+)@(.+)$")


def split_name_version(spec: Any) -> tuple[str, str] | None:
    if not spec or not isinstance(spec, str):
        return None
    m = _NAME_AT_VERSION.match(spec)
    if not m:
        return None
    return m.group(1), m.group(2)


def _records(stdout: str) -> list[dict[str, Any]]:
    records = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            continue
        if isinstance(record, dict):
            records.append(record)
    return records


def _tree_records(stdout: str) -> list[dict[str, Any]]:
    trees: list[dict[str, Any]] = []
    for record in _records(stdout):
        if record.get("type") != "tree":
            continue
        entries = as_dict(record.get("data")).get("trees")
        if isinstance(entries, list):
            trees.extend(t for t in entries if isinstance(t, dict))
    return trees


def _packages_from_list(stdout: str) -> list[InstalledPackage]:
    packages = []
    for tree in _tree_records(stdout):
        parsed = split_name_version(tree.get("name"))
        if parsed:
            packages.append(InstalledPackage(name=parsed[0], version=parsed[1]))
    return packages


class YarnAdapter(PackageManagerAdapter):
    type = "yarn"
    binary = "yarn"
    label = " with Yarn"

    async def detect_workspace(self, cwd: str | Path) -> WorkspaceInfo:
        if not read_manifest(cwd).get("workspaces"):
            return WorkspaceInfo(is_workspace=False)
        try:
            result = await run_command(["yarn", "workspaces", "info", "--json"], cwd, check=False)
            data = _workspace_info(result.stdout)
        except (ExecutionError, ValueError) as exc:
            log.debug("yarn.workspace_info_failed", error=str(exc))
            return WorkspaceInfo(is_workspace=False)
        return WorkspaceInfo(is_workspace=True, packages=list(data))

    async def get_installed_packages(self, cwd: str | Path) -> list[InstalledPackage]:
        try:
            result = await run_command(["yarn", "list", "--json", "--depth=0"], cwd)
        except ExecutionError as exc:
            log.warning("yarn.list_failed", cwd=str(cwd), error=str(exc))
            return []
        return flag_dev_and_peer(_packages_from_list(result.stdout), read_manifest(cwd))

    async def get_global_packages(self) -> list[InstalledPackage]:
        try:
            result = await run_command(["yarn", "global", "list", "--json", "--depth=0"])
        except ExecutionError as exc:
            log.warning("yarn.global_list_failed", error=str(exc))
            return []
        return _packages_from_list(result.stdout)

    def install_args(self, packages: list[str], options: InstallOptions) -> list[str]:
        if options.global_:
            args = ["global", "add", *packages]
        else:
            args = ["add", *packages]
        if options.filter:
            args = ["workspace", options.filter, *args]
        if options.dev:
            args.append("--dev")
        if options.workspace:
            args.append("-W")
        if options.registry:
            args.extend(["--registry", options.registry])
        return args

    def uninstall_args(self, packages: list[str], options: UninstallOptions) -> list[str]:
        if options.filter:
            return ["workspace", options.filter, "remove", *packages]
        if options.global_:
            args = ["global", "remove", *packages]
        else:
            args = ["remove", *packages]
        if options.workspace:
            args.append("-W")
        return args

    def update_args(self, packages: list[str]) -> list[str]:
        return ["upgrade", *packages]

    async def get_dependency_tree(self, cwd: str | Path) -> DependencyNode:
        try:
            result = await run_command(["yarn", "list", "--json"], cwd)
        except ExecutionError as exc:
            log.warning("yarn.tree_failed", cwd=str(cwd), error=str(exc))
            return DependencyNode.empty_root()

        manifest = read_manifest(cwd)
        root = DependencyNode(
            name=str(manifest.get("name") or "root"),
            version=str(manifest.get("version") or "0.0.0"),
        )
        for tree in _tree_records(result.stdout):
            parsed = split_name_version(tree.get("name"))
            if not parsed:
                continue
            child = DependencyNode(name=parsed[0], version=parsed[1])
            children = tree.get("children")
            for sub in children if isinstance(children, list) else []:
                sub_name = as_dict(sub).get("name")
                sub_parsed = split_name_version(sub_name)
                name, version = sub_parsed or (str(sub_name or "unknown"), "unknown")
                grandchild = DependencyNode(name=name, version=version)
                if (name, version) == parsed:
                    grandchild.is_circular = True
                child.children.append(grandchild)
            root.children.append(child)
        return root

    async def audit(self, cwd: str | Path) -> AuditResult:
        try:
            stdout = await self._audit_stdout(["yarn", "audit", "--json"], cwd)
        except ExecutionError as exc:
            log.warning("yarn.audit_failed", cwd=str(cwd), error=str(exc))
            return empty_audit()
        result = parse_yarn_audit(stdout)
        log.info("yarn.audit_done", total=result.summary.total)
        return result

    def audit_fix_command(self) -> list[str]:
        # Yarn classic has no "audit fix"; upgrading within ranges is the closest.
        return ["yarn", "upgrade"]


def _workspace_info(stdout: str) -> dict[str, Any]:
    """``yarn workspaces info --json`` wraps its JSON in a log record on yarn 1.x."""
    if not stdout.strip():
        return {}
    data = json.loads(stdout)
    if isinstance(data, dict) and data.get("type") == "log" and isinstance(data.get("data"), str):
        data = json.loads(data["data"])
    return data if isinstance(data, dict) else {}
