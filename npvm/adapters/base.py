"""Adapter contract shared by the npm, yarn, pnpm and bun backends."""

from __future__ import annotations

import contextlib
import json
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from npvm.adapters.process import OutputChunk, ProcessExit, run_command, stream_command
from npvm.adapters.progress import ProgressEmitter, ProgressSink
from npvm.core.security import validate_package_names, validate_url
from npvm.exceptions import ExecutionError, ParseError
from npvm.models import (
    AuditFixResult,
    AuditResult,
    DependencyNode,
    InstalledPackage,
    OperationProgress,
    OperationType,
    PackageManagerInfo,
    PackageManagerType,
    WorkspaceInfo,
)

log = structlog.get_logger("npvm.adapters")


@dataclass
class InstallOptions:
    dev: bool = False
    global_: bool = False
    workspace: bool = False  # target the workspace root
    filter: str | None = None  # target one workspace package
    registry: str | None = None


@dataclass
class UninstallOptions:
    global_: bool = False
    workspace: bool = False
    filter: str | None = None


def read_manifest(cwd: str | Path) -> dict[str, Any]:
    """Load ``package.json`` from *cwd*; missing or malformed → ``{}``."""
    try:
        data = json.loads((Path(cwd) / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def as_dict(value: Any) -> dict[str, Any]:
    """*value* when it is a JSON object, ``{}`` for any other shape."""
    return value if isinstance(value, dict) else {}


def load_json(stdout: str) -> Any:
    """Parse CLI JSON output; empty output is treated as ``None``."""
    if not stdout or not stdout.strip():
        return None
    try:
        return json.loads(stdout)
    except ValueError as exc:
        raise ParseError(f"invalid JSON output: {exc}") from exc


class PackageManagerAdapter(ABC):
    """One package-manager backend behind a uniform operation contract.

    Read operations (list, tree, audit) never raise: failures are logged and
    degrade to empty values. Mutations (install, uninstall, update) validate input
    before spawning anything and propagate process failures as ``ExecutionError``
    after marking their progress record ``failed``.
    """

    type: PackageManagerType
    binary: str
    progress_step: int = 10
    label: str = ""

    def __init__(self, *, detect_timeout: float = 5.0) -> None:
        self.detect_timeout = detect_timeout

    # ── detection ──────────────────────────────────────────────────────────

    async def detect(self) -> PackageManagerInfo:
        path = shutil.which(self.binary)
        if path is None:
            return PackageManagerInfo(type=self.type, available=False)
        try:
            result = await run_command([self.binary, "--version"], timeout=self.detect_timeout)
        except ExecutionError as exc:
            log.debug("adapter.detect_failed", pm=self.type, error=str(exc))
            return PackageManagerInfo(type=self.type, available=False)
        return PackageManagerInfo(
            type=self.type,
            version=result.stdout.strip(),
            path=path,
            available=True,
        )

    async def detect_workspace(self, cwd: str | Path) -> WorkspaceInfo:
        return WorkspaceInfo(is_workspace=False)

    # ── queries ────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_installed_packages(self, cwd: str | Path) -> list[InstalledPackage]: ...

    @abstractmethod
    async def get_global_packages(self) -> list[InstalledPackage]: ...

    @abstractmethod
    async def get_dependency_tree(self, cwd: str | Path) -> DependencyNode: ...

    @abstractmethod
    async def audit(self, cwd: str | Path) -> AuditResult: ...

    # ── mutations ──────────────────────────────────────────────────────────

    @abstractmethod
    def install_args(self, packages: list[str], options: InstallOptions) -> list[str]: ...

    @abstractmethod
    def uninstall_args(self, packages: list[str], options: UninstallOptions) -> list[str]: ...

    def update_args(self, packages: list[str]) -> list[str]:
        return ["update", *packages]

    async def install(
        self,
        packages: list[str],
        cwd: str | Path,
        options: InstallOptions | None = None,
        on_progress: ProgressSink | None = None,
    ) -> OperationProgress:
        options = options or InstallOptions()
        validate_package_names(packages)
        if options.registry:
            validate_url(options.registry)
        return await self._run_mutation(
            "install",
            self.install_args(packages, options),
            cwd,
            on_progress,
            package=", ".join(packages),
            running=f"Installing{self.label}...",
            done="Installation complete",
        )

    async def uninstall(
        self,
        packages: list[str],
        cwd: str | Path,
        options: UninstallOptions | None = None,
        on_progress: ProgressSink | None = None,
    ) -> OperationProgress:
        options = options or UninstallOptions()
        validate_package_names(packages)
        return await self._run_mutation(
            "uninstall",
            self.uninstall_args(packages, options),
            cwd,
            on_progress,
            package=", ".join(packages),
            running=f"Uninstalling{self.label}...",
            done="Uninstallation complete",
        )

    async def update(
        self,
        packages: list[str],
        cwd: str | Path,
        on_progress: ProgressSink | None = None,
    ) -> OperationProgress:
        if packages:
            validate_package_names(packages)
        return await self._run_mutation(
            "update",
            self.update_args(packages),
            cwd,
            on_progress,
            package=", ".join(packages) or "all",
            running=f"Updating{self.label}...",
            done="Update complete",
        )

    # ── audit fix ──────────────────────────────────────────────────────────

    def audit_fix_command(self) -> list[str]:
        return [self.binary, "audit", "fix"]

    async def audit_fix(
        self,
        cwd: str | Path,
        on_progress: ProgressSink | None = None,
    ) -> AuditFixResult:
        """Audit, attempt an automatic fix, audit again; ``fixed`` is the difference.

        The fix command's exit status is informational (it is non-zero whenever
        vulnerabilities remain), so only a missing binary fails the operation.
        """
        logs: list[str] = []
        emitter = ProgressEmitter("audit", on_progress, message="Fixing vulnerabilities...")
        emitter.start()

        before = await self.audit(cwd)

        command = self.audit_fix_command()
        emitter.advance(20, f"Running {' '.join(command)}...")
        try:
            result = await run_command(command, cwd, check=False)
        except ExecutionError as exc:
            log.warning("adapter.audit_fix_failed", pm=self.type, error=str(exc))
            emitter.fail(str(exc))
            return AuditFixResult(fixed=0, remaining=AuditResult(), logs=[str(exc)])
        for text in (result.stdout, result.stderr):
            if text:
                logs.append(text)
                emitter.log(text)

        emitter.advance(70, "Re-scanning...")
        remaining = await self.audit(cwd)
        fixed = max(0, before.summary.total - remaining.summary.total)
        emitter.complete(f"Fixed {fixed} vulnerabilities")
        return AuditFixResult(fixed=fixed, remaining=remaining, logs=logs)

    # ── registry ───────────────────────────────────────────────────────────

    async def set_registry(self, url: str) -> None:
        validate_url(url)
        await run_command([self.binary, "config", "set", "registry", url])

    async def get_registry(self) -> str:
        result = await run_command([self.binary, "config", "get", "registry"])
        return result.stdout.strip()

    # ── internal ───────────────────────────────────────────────────────────

    async def _run_mutation(
        self,
        op_type: OperationType,
        args: list[str],
        cwd: str | Path,
        on_progress: ProgressSink | None,
        *,
        package: str,
        running: str,
        done: str,
    ) -> OperationProgress:
        """Stream one CLI invocation into a progress record.

        stdout advances the heuristic progress, stderr is only logged. A non-zero
        exit marks the record ``failed`` before ``ExecutionError`` is raised.
        """
        command = [self.binary, *args]
        emitter = ProgressEmitter(
            op_type, on_progress, package=package, message=running, step=self.progress_step
        )
        emitter.start()
        log.info("adapter.mutation_start", pm=self.type, op=op_type, package=package)

        stderr: list[str] = []
        try:
            async with contextlib.aclosing(stream_command(command, cwd)) as events:
                async for event in events:
                    if isinstance(event, OutputChunk):
                        if event.stream == "stderr":
                            stderr.append(event.text)
                        emitter.log(event.text, advance=event.stream == "stdout")
                    elif isinstance(event, ProcessExit) and not event.ok:
                        raise ExecutionError(
                            f"{self.binary} {args[0]} failed (exit {event.returncode})",
                            command=command,
                            returncode=event.returncode,
                            stderr="".join(stderr),
                        )
        except ExecutionError as exc:
            log.warning("adapter.mutation_failed", pm=self.type, op=op_type, error=str(exc))
            emitter.fail(str(exc))
            raise

        log.info("adapter.mutation_done", pm=self.type, op=op_type, package=package)
        return emitter.complete(done)

    async def _run_json(self, args: list[str], cwd: str | Path | None = None) -> Any:
        """Run a listing command and decode its JSON, tolerating non-zero exits.

        ``npm ls`` and friends exit non-zero on extraneous/missing packages while
        still printing a usable document.
        """
        result = await run_command([self.binary, *args], cwd, check=False)
        if result.returncode != 0 and not result.stdout.strip():
            raise ExecutionError(
                f"{self.binary} {' '.join(args)} failed (exit {result.returncode})",
                command=[self.binary, *args],
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return load_json(result.stdout)

    async def _audit_stdout(self, command: list[str], cwd: str | Path) -> str:
        result = await run_command(command, cwd, check=False)
        if result.stderr.strip():
            log.debug("adapter.audit_stderr", pm=self.type, stderr=result.stderr[:500])
        log.debug(
            "adapter.audit_ran",
            pm=self.type,
            returncode=result.returncode,
            output_bytes=len(result.stdout),
        )
        return result.stdout


def flag_dev_and_peer(
    packages: list[InstalledPackage], manifest: dict[str, Any]
) -> list[InstalledPackage]:
    """Mark ``is_dev``/``is_peer`` from the manifest where the listing lacks it."""
    dev = as_dict(manifest.get("devDependencies"))
    peer = as_dict(manifest.get("peerDependencies"))
    for pkg in packages:
        pkg.is_dev = pkg.is_dev or pkg.name in dev
        pkg.is_peer = pkg.is_peer or pkg.name in peer
    return packages


def build_tree(
    name: str,
    version: str,
    deps: dict[str, Any] | None,
    _ancestors: frozenset[str] = frozenset(),
) -> DependencyNode:
    """Recursively convert an ``ls --json`` dependency map into a tree.

    A ``name@version`` already on the path from the root is emitted once with
    ``is_circular=True`` and not expanded again.
    """
    key = f"{name}@{version}"
    node = DependencyNode(name=name, version=version)
    if key in _ancestors:
        node.is_circular = True
        return node
    if isinstance(deps, dict):
        ancestors = _ancestors | {key}
        for dep_name, info in deps.items():
            info = as_dict(info)
            node.children.append(
                build_tree(
                    dep_name,
                    str(info.get("version") or "unknown"),
                    info.get("dependencies"),
                    ancestors,
                )
            )
    return node
