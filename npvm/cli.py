"""CLI entry point: npvm.

Subcommands:
    npvm detect                          # Which package managers are installed
    npvm list [--global]                 # Depth-0 packages of the project
    npvm install lodash --dev            # Mutations stream progress on stderr
    npvm audit                           # Normalized vulnerability report
    npvm analyze https://github.com/o/r  # Remote analysis, no clone
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click
import httpx

from npvm.adapters import InstallOptions, UninstallOptions, create_default_registry
from npvm.adapters.base import PackageManagerAdapter
from npvm.core.config import RequestContext, Settings
from npvm.core.logging import setup_logging
from npvm.core.security import sanitize_error_message, validate_path
from npvm.engines.remote_analyzer import analyze_remote
from npvm.exceptions import NpvmError
from npvm.models import REGISTRIES, ApiModel, OperationProgress

_PM_CHOICES = click.Choice(["npm", "yarn", "pnpm", "bun"])


def _echo_json(payload: Any) -> None:
    if isinstance(payload, ApiModel):
        payload = payload.to_api()
    elif isinstance(payload, list):
        payload = [p.to_api() if isinstance(p, ApiModel) else p for p in payload]
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _emit_event(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False), err=True)


def _print_progress(progress: OperationProgress) -> None:
    _emit_event({"event": "progress", **progress.to_api()})


def _fail(exc: BaseException) -> None:
    message = sanitize_error_message(exc)
    _emit_event({"event": "error", "message": message})
    sys.exit(1)


class _State:
    def __init__(self, pm: str | None, path: str) -> None:
        self.settings = Settings.from_env()
        self.registry = create_default_registry(detect_timeout=self.settings.detect_timeout)
        self.pm = pm
        self.path = path

    async def context(self, registry: str | None = None) -> RequestContext:
        pm_type = self.pm or await self.registry.select_default()
        path = validate_path(self.path)
        return RequestContext.for_path(path, pm_type, registry)  # type: ignore[arg-type]

    async def adapter(
        self, registry: str | None = None
    ) -> tuple[PackageManagerAdapter, RequestContext]:
        ctx = await self.context(registry)
        return self.registry.resolve(ctx), ctx


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except (NpvmError, httpx.HTTPError) as exc:
        _fail(exc)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--pm", type=_PM_CHOICES, default=None, help="Package manager (default: auto-detect)")
@click.option("--path", default=".", help="Project directory")
@click.pass_context
def main(ctx: click.Context, verbose: bool, pm: str | None, path: str) -> None:
    """npvm: manage npm, yarn, pnpm and bun projects through one interface."""
    setup_logging("DEBUG" if verbose else None)
    ctx.obj = _State(pm, path)


@main.command("detect")
@click.pass_obj
def detect(state: _State) -> None:
    """Probe every supported package manager."""
    _echo_json(_run(state.registry.detect_all()))


@main.command("list")
@click.option("-g", "--global", "global_", is_flag=True, help="List global packages")
@click.pass_obj
def list_packages(state: _State, global_: bool) -> None:
    """List depth-0 packages."""

    async def _list() -> Any:
        adapter, ctx = await state.adapter()
        if global_ or ctx.is_global:
            return await adapter.get_global_packages()
        return await adapter.get_installed_packages(ctx.project_path)

    _echo_json(_run(_list()))


@main.command("tree")
@click.pass_obj
def tree(state: _State) -> None:
    """Print the dependency tree."""

    async def _tree() -> Any:
        adapter, ctx = await state.adapter()
        return await adapter.get_dependency_tree(ctx.project_path)

    _echo_json(_run(_tree()))


def _run_mutation(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except (NpvmError, httpx.HTTPError) as exc:
        _fail(exc)
    _emit_event({"event": "done"})


@main.command("install")
@click.argument("packages", nargs=-1, required=True)
@click.option("-D", "--dev", is_flag=True, help="Save as a dev dependency")
@click.option("-g", "--global", "global_", is_flag=True, help="Install globally")
@click.option("-w", "--workspace", is_flag=True, help="Target the workspace root")
@click.option("--filter", "filter_", default=None, help="Target one workspace package")
@click.option("--registry", default=None, help="Registry URL for this install")
@click.pass_obj
def install(
    state: _State,
    packages: tuple[str, ...],
    dev: bool,
    global_: bool,
    workspace: bool,
    filter_: str | None,
    registry: str | None,
) -> None:
    """Install packages."""

    async def _install() -> None:
        adapter, ctx = await state.adapter(registry)
        options = InstallOptions(
            dev=dev,
            global_=global_,
            workspace=workspace,
            filter=filter_,
            registry=ctx.registry,
        )
        await adapter.install(list(packages), ctx.project_path, options, _print_progress)

    _run_mutation(_install())


@main.command("uninstall")
@click.argument("packages", nargs=-1, required=True)
@click.option("-g", "--global", "global_", is_flag=True, help="Uninstall globally")
@click.option("-w", "--workspace", is_flag=True, help="Target the workspace root")
@click.option("--filter", "filter_", default=None, help="Target one workspace package")
@click.pass_obj
def uninstall(
    state: _State,
    packages: tuple[str, ...],
    global_: bool,
    workspace: bool,
    filter_: str | None,
) -> None:
    """Remove packages."""
    options = UninstallOptions(global_=global_, workspace=workspace, filter=filter_)

    async def _uninstall() -> None:
        adapter, ctx = await state.adapter()
        await adapter.uninstall(list(packages), ctx.project_path, options, _print_progress)

    _run_mutation(_uninstall())


@main.command("update")
@click.argument("packages", nargs=-1)
@click.pass_obj
def update(state: _State, packages: tuple[str, ...]) -> None:
    """Update the given packages, or everything when none are given."""

    async def _update() -> None:
        adapter, ctx = await state.adapter()
        await adapter.update(list(packages), ctx.project_path, _print_progress)

    _run_mutation(_update())


@main.command("audit")
@click.pass_obj
def audit(state: _State) -> None:
    """Run a security audit. An empty report may also mean the audit could not run."""

    async def _audit() -> Any:
        adapter, ctx = await state.adapter()
        return await adapter.audit(ctx.project_path)

    _echo_json(_run(_audit()))


@main.command("audit-fix")
@click.pass_obj
def audit_fix(state: _State) -> None:
    """Try to fix vulnerabilities automatically. The report prints even when the fix fails."""
    last: list[OperationProgress] = []

    def _track(progress: OperationProgress) -> None:
        last[:] = [progress]
        _print_progress(progress)

    async def _fix() -> Any:
        adapter, ctx = await state.adapter()
        return await adapter.audit_fix(ctx.project_path, _track)

    _echo_json(_run(_fix()))
    if last and last[0].status == "failed":
        _fail(NpvmError(last[0].message or "audit fix failed"))
    _emit_event({"event": "done"})


@main.group("registry")
def registry_group() -> None:
    """Show or change the configured registry."""


@registry_group.command("get")
@click.pass_obj
def registry_get(state: _State) -> None:
    async def _get() -> str:
        adapter, _ = await state.adapter()
        return await adapter.get_registry()

    click.echo(_run(_get()))


@registry_group.command("set")
@click.argument("url")
@click.pass_obj
def registry_set(state: _State, url: str) -> None:
    async def _set() -> None:
        adapter, _ = await state.adapter()
        await adapter.set_registry(url)

    _run(_set())
    click.echo(f"Registry set to {url}")


@registry_group.command("list")
def registry_list() -> None:
    """Well-known registries."""
    _echo_json(REGISTRIES)


@main.command("workspace")
@click.pass_obj
def workspace(state: _State) -> None:
    """Detect native workspace configuration."""

    async def _detect() -> Any:
        adapter, ctx = await state.adapter()
        return await adapter.detect_workspace(ctx.project_path)

    _echo_json(_run(_detect()))


@main.command("analyze")
@click.argument("source")
@click.option("-b", "--branch", default=None, help="Branch to analyze (git sources)")
@click.pass_obj
def analyze(state: _State, source: str, branch: str | None) -> None:
    """Analyze a package name, a package-site URL or a GitHub/GitLab repository."""
    _echo_json(_run(analyze_remote(source, branch, settings=state.settings)))


if __name__ == "__main__":
    main()
