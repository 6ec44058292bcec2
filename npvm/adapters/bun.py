"""Bun backend.

Bun has no native dependency-tree or audit command: the tree falls back to the
project manifest and audits are delegated to npm when it is installed.
"""

from __future__ import annotations

import re
import shutil
import tomllib
from pathlib import Path

import structlog

from npvm.adapters.audit import empty_audit, parse_audit_json
from npvm.adapters.base import (
    InstallOptions,
    PackageManagerAdapter,
    UninstallOptions,
    as_dict,
    flag_dev_and_peer,
    read_manifest,
)
from npvm.adapters.process import run_command
from npvm.core.config import DEFAULT_NPM_REGISTRY
from npvm.core.security import validate_url
from npvm.exceptions import ExecutionError
from npvm.models import AuditResult, DependencyNode, InstalledPackage

log = structlog.get_logger("npvm.adapters")

# "├── name@1.2.3" / "└── @scope/name@1.2.3" lines from `bun pm ls`
_LS_LINE = re.compile(r"^[\s│├└─]*(@?[^@\s]+)@(\S+)")
_INSTALL_HEADER = re.compile(r"^\[install\]\s*$", re.MULTILINE)
_REGISTRY_LINE = re.compile(r"^registry\s*=.*$", re.MULTILINE)
_INLINE_URL = re.compile(r"""(\burl\s*=\s*)("[^"]*"|'[^']*')""")


def _rewrite_registry(existing: str, url: str) -> str:
    """Replacement ``registry = ...`` line. An inline table keeps its other keys."""
    value = existing.partition("=")[2].strip()
    if not value.startswith("{"):
        return f'registry = "{url}"'
    if _INLINE_URL.search(value):
        value = _INLINE_URL.sub(lambda m: f'{m.group(1)}"{url}"', value, count=1)
    elif value[1:].strip() == "}":
        value = f'{{ url = "{url}" }}'
    else:
        value = f'{{ url = "{url}", {value[1:].lstrip()}'
    return f"registry = {value}"


def _packages_from_ls(stdout: str) -> list[InstalledPackage]:
    packages = []
    for line in stdout.splitlines():
        m = _LS_LINE.match(line)
        if m:
            packages.append(InstalledPackage(name=m.group(1), version=m.group(2)))
    return packages


class BunAdapter(PackageManagerAdapter):
    type = "bun"
    binary = "bun"
    label = " with Bun"
    progress_step = 20

    def __init__(self, *, detect_timeout: float = 5.0, config_path: Path | None = None) -> None:
        super().__init__(detect_timeout=detect_timeout)
        self.config_path = config_path or Path.home() / ".bunfig.toml"

    async def get_installed_packages(self, cwd: str | Path) -> list[InstalledPackage]:
        try:
            result = await run_command(["bun", "pm", "ls"], cwd)
        except ExecutionError as exc:
            log.warning("bun.list_failed", cwd=str(cwd), error=str(exc))
            return []
        return flag_dev_and_peer(_packages_from_ls(result.stdout), read_manifest(cwd))

    async def get_global_packages(self) -> list[InstalledPackage]:
        try:
            result = await run_command(["bun", "pm", "ls", "-g"])
        except ExecutionError as exc:
            log.warning("bun.global_list_failed", error=str(exc))
            return []
        return _packages_from_ls(result.stdout)

    def install_args(self, packages: list[str], options: InstallOptions) -> list[str]:
        args = ["add", *packages]
        if options.dev:
            args.append("--dev")
        if options.global_:
            args.append("-g")
        if options.registry:
            args.extend(["--registry", options.registry])
        return args

    def uninstall_args(self, packages: list[str], options: UninstallOptions) -> list[str]:
        args = ["remove", *packages]
        if options.global_:
            args.append("-g")
        return args

    async def get_dependency_tree(self, cwd: str | Path) -> DependencyNode:
        manifest = read_manifest(cwd)
        if not manifest:
            return DependencyNode.empty_root()
        root = DependencyNode(
            name=str(manifest.get("name") or "root"),
            version=str(manifest.get("version") or "0.0.0"),
        )
        deps = {
            **as_dict(manifest.get("dependencies")),
            **as_dict(manifest.get("devDependencies")),
        }
        for name, version in deps.items():
            root.children.append(DependencyNode(name=name, version=str(version)))
        return root

    async def audit(self, cwd: str | Path) -> AuditResult:
        if shutil.which("npm") is None:
            log.warning("bun.audit_unavailable", reason="npm not found")
            return empty_audit()
        try:
            stdout = await self._audit_stdout(["npm", "audit", "--json"], cwd)
        except ExecutionError as exc:
            log.warning("bun.audit_failed", cwd=str(cwd), error=str(exc))
            return empty_audit()
        result = parse_audit_json(stdout)
        log.info("bun.audit_done", total=result.summary.total, via="npm")
        return result

    def audit_fix_command(self) -> list[str]:
        return ["npm", "audit", "fix"]

    async def set_registry(self, url: str) -> None:
        """Persist ``[install] registry`` in the global bunfig."""
        validate_url(url)
        line = f'registry = "{url}"'
        try:
            text = self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""

        header = _INSTALL_HEADER.search(text)
        if header is None:
            text = text.rstrip("\n") + ("\n\n" if text.strip() else "") + f"[install]\n{line}\n"
        else:
            section_end = text.find("\n[", header.end())
            section_end = len(text) if section_end == -1 else section_end
            section = text[header.end():section_end]
            if _REGISTRY_LINE.search(section):
                section = _REGISTRY_LINE.sub(
                    lambda m: _rewrite_registry(m.group(0), url), section, count=1
                )
            else:
                section = f"\n{line}" + section
            text = text[: header.end()] + section + text[section_end:]

        self.config_path.write_text(text, encoding="utf-8")
        log.info("bun.registry_set", path=str(self.config_path), registry=url)

    async def get_registry(self) -> str:
        try:
            data = tomllib.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            return DEFAULT_NPM_REGISTRY + "/"
        registry = as_dict(data.get("install")).get("registry")
        if isinstance(registry, dict):
            registry = registry.get("url")
        return registry if isinstance(registry, str) and registry else DEFAULT_NPM_REGISTRY + "/"
