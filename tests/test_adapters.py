"""Tests for the npm, yarn, pnpm and bun adapters (subprocess layer mocked)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from npvm.adapters.base import InstallOptions, UninstallOptions, build_tree, load_json
from npvm.adapters.bun import BunAdapter
from npvm.adapters.npm import NpmAdapter
from npvm.adapters.pnpm import PnpmAdapter
from npvm.adapters.process import CommandResult, OutputChunk, ProcessExit
from npvm.adapters.yarn import YarnAdapter, split_name_version
from npvm.exceptions import ExecutionError, ParseError, ValidationError

# ── helpers ──────────────────────────────────────────────────────────────


def _ok(stdout: str = "", stderr: str = "", returncode: int = 0) -> CommandResult:
    return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)


def _fake_stream(*events):
    """Build a stand-in for stream_command that records its argv."""
    calls = []

    async def _stream(args, cwd=None):
        calls.append(list(args))
        for event in events:
            yield event

    return _stream, calls


def _recorder():
    snapshots = []
    return snapshots, lambda p: snapshots.append(p.model_copy(deep=True))


# ── detection ────────────────────────────────────────────────────────────


class TestDetect:
    @pytest.mark.anyio
    async def test_missing_binary_unavailable(self):
        with patch("npvm.adapters.base.shutil.which", return_value=None):
            info = await NpmAdapter().detect()
        assert info.available is False
        assert info.type == "npm"

    @pytest.mark.anyio
    async def test_version_reported(self):
        with (
            patch("npvm.adapters.base.shutil.which", return_value="/usr/bin/pnpm"),
            patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok("9.1.0\n"))),
        ):
            info = await PnpmAdapter().detect()
        assert info.available is True
        assert info.version == "9.1.0"
        assert info.path == "/usr/bin/pnpm"

    @pytest.mark.anyio
    async def test_timeout_unavailable(self):
        with (
            patch("npvm.adapters.base.shutil.which", return_value="/usr/bin/bun"),
            patch(
                "npvm.adapters.base.run_command",
                AsyncMock(side_effect=ExecutionError("bun timed out after 5.0s")),
            ),
        ):
            info = await BunAdapter().detect()
        assert info.available is False


# ── argv construction ────────────────────────────────────────────────────


class TestInstallArgs:
    def test_npm(self):
        opts = InstallOptions(dev=True, global_=True, registry="https://r.example/")
        assert NpmAdapter().install_args(["lodash"], opts) == [
            "install", "lodash", "--save-dev", "-g", "--registry", "https://r.example/",
        ]

    def test_npm_workspace_filter(self):
        opts = InstallOptions(workspace=True, filter="web")
        assert NpmAdapter().install_args(["a"], opts) == [
            "install", "a", "--include-workspace-root", "-w", "web",
        ]

    def test_yarn(self):
        assert YarnAdapter().install_args(["a", "b"], InstallOptions(dev=True)) == ["add", "a", "b", "--dev"]
        assert YarnAdapter().install_args(["a"], InstallOptions(global_=True)) == ["global", "add", "a"]
        assert YarnAdapter().install_args(["a"], InstallOptions(workspace=True)) == ["add", "a", "-W"]

    def test_yarn_filter(self):
        assert YarnAdapter().install_args(["a"], InstallOptions(filter="web")) == [
            "workspace", "web", "add", "a",
        ]

    def test_pnpm(self):
        opts = InstallOptions(dev=True, workspace=True, filter="web")
        assert PnpmAdapter().install_args(["a"], opts) == [
            "add", "a", "--save-dev", "-w", "--filter", "web",
        ]

    def test_bun(self):
        assert BunAdapter().install_args(["a"], InstallOptions(dev=True, global_=True)) == [
            "add", "a", "--dev", "-g",
        ]

    def test_uninstall(self):
        assert NpmAdapter().uninstall_args(["a"], UninstallOptions(global_=True)) == ["uninstall", "a", "-g"]
        assert YarnAdapter().uninstall_args(["a"], UninstallOptions()) == ["remove", "a"]
        assert PnpmAdapter().uninstall_args(["a"], UninstallOptions(filter="web")) == [
            "remove", "a", "--filter", "web",
        ]
        assert BunAdapter().uninstall_args(["a"], UninstallOptions()) == ["remove", "a"]

    def test_update(self):
        assert NpmAdapter().update_args([]) == ["update"]
        assert YarnAdapter().update_args(["a"]) == ["upgrade", "a"]


# ── mutations ────────────────────────────────────────────────────────────


class TestMutations:
    @pytest.mark.anyio
    async def test_install_streams_progress(self, project_dir):
        stream, calls = _fake_stream(
            OutputChunk("stdout", "added 1 package\n"),
            OutputChunk("stderr", "npm WARN deprecated\n"),
            OutputChunk("stdout", "audited 2 packages\n"),
            ProcessExit(0),
        )
        snapshots, sink = _recorder()
        with patch("npvm.adapters.base.stream_command", stream):
            result = await NpmAdapter().install(["lodash"], project_dir, InstallOptions(dev=True), sink)

        assert calls == [["npm", "install", "lodash", "--save-dev"]]
        assert result.status == "completed"
        assert result.progress == 100
        assert result.message == "Installation complete"
        assert len(result.logs) == 3
        assert [s.status for s in snapshots[:2]] == ["pending", "running"]
        values = [s.progress for s in snapshots]
        assert values == sorted(values)
        # stderr is logged but does not advance
        assert values[2:5] == [10, 10, 20]

    @pytest.mark.anyio
    async def test_bun_advances_faster(self, project_dir):
        stream, _ = _fake_stream(*(OutputChunk("stdout", f"{i}\n") for i in range(8)), ProcessExit(0))
        snapshots, sink = _recorder()
        with patch("npvm.adapters.base.stream_command", stream):
            await BunAdapter().install(["a"], project_dir, on_progress=sink)

        running = [s.progress for s in snapshots if s.status == "running"]
        assert running[1] == 20
        assert max(running) == 90

    @pytest.mark.anyio
    async def test_failure_marks_failed_then_raises(self, project_dir):
        stream, _ = _fake_stream(OutputChunk("stderr", "ERR! 404\n"), ProcessExit(1))
        snapshots, sink = _recorder()
        with patch("npvm.adapters.base.stream_command", stream):
            with pytest.raises(ExecutionError) as exc_info:
                await YarnAdapter().install(["nope"], project_dir, on_progress=sink)

        assert exc_info.value.returncode == 1
        assert "ERR! 404" in exc_info.value.stderr
        assert snapshots[-1].status == "failed"
        assert snapshots[-1].completed_at is not None

    @pytest.mark.anyio
    async def test_invalid_name_never_spawns(self, project_dir):
        stream, calls = _fake_stream(ProcessExit(0))
        with patch("npvm.adapters.base.stream_command", stream):
            with pytest.raises(ValidationError):
                await NpmAdapter().install(["lodash; rm -rf /"], project_dir)
            with pytest.raises(ValidationError):
                await PnpmAdapter().uninstall([], project_dir)
            with pytest.raises(ValidationError):
                await NpmAdapter().install(["a"], project_dir, InstallOptions(registry="ftp://x"))
        assert calls == []

    @pytest.mark.anyio
    async def test_update_all(self, project_dir):
        stream, calls = _fake_stream(ProcessExit(0))
        with patch("npvm.adapters.base.stream_command", stream):
            result = await PnpmAdapter().update([], project_dir)
        assert calls == [["pnpm", "update"]]
        assert result.package == "all"
        assert result.type == "update"

    @pytest.mark.anyio
    async def test_uninstall_labels(self, project_dir):
        stream, _ = _fake_stream(ProcessExit(0))
        snapshots, sink = _recorder()
        with patch("npvm.adapters.base.stream_command", stream):
            await YarnAdapter().uninstall(["a", "b"], project_dir, on_progress=sink)
        assert snapshots[1].message == "Uninstalling with Yarn..."
        assert snapshots[-1].package == "a, b"


# ── queries ──────────────────────────────────────────────────────────────


class TestNpmQueries:
    @pytest.mark.anyio
    async def test_installed_packages_flags_dev_and_peer(self, project_dir):
        ls = {
            "name": "demo-app",
            "dependencies": {
                "lodash": {"version": "4.17.21"},
                "jest": {"version": "29.7.0"},
                "react": {"version": "18.2.0"},
            },
        }
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls), returncode=1))):
            packages = await NpmAdapter().get_installed_packages(project_dir)

        by_name = {p.name: p for p in packages}
        assert by_name["lodash"].version == "4.17.21"
        assert by_name["jest"].is_dev is True
        assert by_name["react"].is_peer is True
        assert by_name["lodash"].is_dev is False

    @pytest.mark.anyio
    async def test_list_failure_degrades(self, project_dir):
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok("", "boom", 1))):
            assert await NpmAdapter().get_installed_packages(project_dir) == []

    @pytest.mark.anyio
    async def test_tree(self, project_dir):
        ls = {
            "name": "demo-app",
            "version": "1.0.0",
            "dependencies": {
                "a": {"version": "1.0.0", "dependencies": {"b": {"version": "2.0.0"}}},
            },
        }
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            tree = await NpmAdapter().get_dependency_tree(project_dir)
        assert tree.name == "demo-app"
        assert tree.children[0].name == "a"
        assert tree.children[0].children[0].version == "2.0.0"

    @pytest.mark.anyio
    async def test_unexpected_entry_shapes(self, project_dir):
        ls = {"name": "demo-app", "dependencies": {"a": "1.0.0", "b": {"version": "2.0.0"}}}
        run = AsyncMock(return_value=_ok(json.dumps(ls)))
        with patch("npvm.adapters.base.run_command", run):
            packages = await NpmAdapter().get_installed_packages(project_dir)
            tree = await NpmAdapter().get_dependency_tree(project_dir)

        assert [(p.name, p.version) for p in packages] == [("a", "unknown"), ("b", "2.0.0")]
        assert [(c.name, c.version) for c in tree.children] == [("a", "unknown"), ("b", "2.0.0")]

    @pytest.mark.anyio
    async def test_dependencies_not_an_object(self, project_dir):
        ls = {"name": "demo-app", "dependencies": ["a"]}
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            assert await NpmAdapter().get_installed_packages(project_dir) == []
            assert (await NpmAdapter().get_dependency_tree(project_dir)).children == []

    @pytest.mark.anyio
    async def test_tree_failure_empty_root(self, project_dir):
        with patch("npvm.adapters.base.run_command", AsyncMock(side_effect=ExecutionError("gone"))):
            tree = await NpmAdapter().get_dependency_tree(project_dir)
        assert (tree.name, tree.version, tree.children) == ("root", "0.0.0", [])

    @pytest.mark.anyio
    async def test_audit_garbage_is_empty(self, project_dir):
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok("not json", returncode=1))):
            result = await NpmAdapter().audit(project_dir)
        assert result.summary.total == 0


class TestLoadJson:
    def test_empty_is_none(self):
        assert load_json("  \n") is None

    def test_garbage_raises_parse_error(self):
        with pytest.raises(ParseError):
            load_json("npm ERR! code E404")


class TestBuildTree:
    def test_cycle_marked_circular(self):
        deps = {
            "a": {
                "version": "1.0.0",
                "dependencies": {
                    "b": {"version": "1.0.0", "dependencies": {"a": {"version": "1.0.0", "dependencies": {}}}}
                },
            }
        }
        tree = build_tree("root", "0.0.0", deps)
        looped = tree.children[0].children[0].children[0]
        assert looped.name == "a"
        assert looped.is_circular is True
        assert looped.children == []
        assert tree.children[0].is_circular is None

    def test_same_name_other_version_not_circular(self):
        deps = {"a": {"version": "1.0.0", "dependencies": {"a": {"version": "2.0.0"}}}}
        tree = build_tree("root", "0.0.0", deps)
        assert tree.children[0].children[0].is_circular is None


class TestYarnQueries:
    def test_split_name_version(self):
        assert split_name_version("@babel/core@7.1.0") == ("@babel/core", "7.1.0")
        assert split_name_version("lodash@4.17.21") == ("lodash", "4.17.21")
        assert split_name_version("nothing") is None

    @pytest.mark.anyio
    async def test_list_and_tree(self, project_dir):
        stdout = "\n".join(
            [
                json.dumps({"type": "info", "data": "warming up"}),
                json.dumps(
                    {
                        "type": "tree",
                        "data": {
                            "type": "list",
                            "trees": [
                                {"name": "lodash@4.17.21", "children": []},
                                {"name": "jest@29.7.0", "children": [{"name": "jest@29.7.0"}]},
                            ],
                        },
                    }
                ),
            ]
        )
        with patch("npvm.adapters.yarn.run_command", AsyncMock(return_value=_ok(stdout))):
            packages = await YarnAdapter().get_installed_packages(project_dir)
            tree = await YarnAdapter().get_dependency_tree(project_dir)

        assert [(p.name, p.version) for p in packages] == [("lodash", "4.17.21"), ("jest", "29.7.0")]
        assert packages[1].is_dev is True
        assert tree.name == "demo-app"
        assert tree.children[1].children[0].is_circular is True

    @pytest.mark.anyio
    async def test_unexpected_tree_shapes(self, project_dir):
        stdout = "\n".join(
            [
                json.dumps({"type": "tree", "data": "nope"}),
                json.dumps(
                    {
                        "type": "tree",
                        "data": {
                            "trees": [
                                "lodash@4.17.21",
                                {"name": 42},
                                {"name": "ms@2.1.3", "children": "bad"},
                                {"name": "debug@4.3.4", "children": ["x", {"name": "ms@2.1.3"}]},
                            ]
                        },
                    }
                ),
            ]
        )
        with patch("npvm.adapters.yarn.run_command", AsyncMock(return_value=_ok(stdout))):
            packages = await YarnAdapter().get_installed_packages(project_dir)
            tree = await YarnAdapter().get_dependency_tree(project_dir)

        assert [p.name for p in packages] == ["ms", "debug"]
        assert tree.children[0].children == []
        assert [(c.name, c.version) for c in tree.children[1].children] == [
            ("unknown", "unknown"),
            ("ms", "2.1.3"),
        ]

    @pytest.mark.anyio
    async def test_audit_uses_ndjson(self, project_dir):
        stdout = json.dumps(
            {
                "type": "auditAdvisory",
                "data": {"advisory": {"id": 1, "title": "t", "module_name": "m", "severity": "high"}},
            }
        )
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(stdout, returncode=8))):
            result = await YarnAdapter().audit(project_dir)
        assert result.summary.high == 1


class TestPnpmQueries:
    @pytest.mark.anyio
    async def test_sections(self, project_dir):
        ls = [
            {
                "name": "demo-app",
                "dependencies": {"lodash": {"version": "4.17.21"}},
                "devDependencies": {"jest": {"version": "29.7.0"}},
            }
        ]
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            packages = await PnpmAdapter().get_installed_packages(project_dir)
        assert [(p.name, p.is_dev) for p in packages] == [("lodash", False), ("jest", True)]

    @pytest.mark.anyio
    async def test_sections_of_wrong_shape(self, project_dir):
        ls = [{"name": "demo-app", "dependencies": "nope", "devDependencies": ["x"]}]
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            packages = await PnpmAdapter().get_installed_packages(project_dir)
            tree = await PnpmAdapter().get_dependency_tree(project_dir)
        assert packages == []
        assert tree.name == "demo-app"
        assert tree.children == []

    @pytest.mark.anyio
    async def test_tree_merges_dev_dependencies(self, project_dir):
        ls = [
            {
                "name": "demo-app",
                "version": "1.0.0",
                "dependencies": {"lodash": {"version": "4.17.21"}},
                "devDependencies": {"jest": "29.7.0"},
            }
        ]
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            tree = await PnpmAdapter().get_dependency_tree(project_dir)
        assert [(c.name, c.version) for c in tree.children] == [
            ("lodash", "4.17.21"),
            ("jest", "unknown"),
        ]

    @pytest.mark.anyio
    async def test_workspace(self, project_dir):
        (project_dir / "pnpm-workspace.yaml").write_text("packages:\n  - 'packages/*'\n")
        ls = [
            {"name": "demo-app", "path": str(project_dir.resolve())},
            {"name": "web", "path": str(project_dir / "packages" / "web")},
        ]
        with patch("npvm.adapters.base.run_command", AsyncMock(return_value=_ok(json.dumps(ls)))):
            info = await PnpmAdapter().detect_workspace(project_dir)
        assert info.is_workspace is True
        assert info.packages == ["web"]

    @pytest.mark.anyio
    async def test_no_workspace_file(self, project_dir):
        assert (await PnpmAdapter().detect_workspace(project_dir)).is_workspace is False


class TestBun:
    @pytest.mark.anyio
    async def test_list_parses_tree_output(self, project_dir):
        stdout = f"{project_dir} node_modules (3)\n├── jest@29.7.0\n└── @types/node@20.1.0\n"
        with patch("npvm.adapters.bun.run_command", AsyncMock(return_value=_ok(stdout))):
            packages = await BunAdapter().get_installed_packages(project_dir)
        assert [(p.name, p.version) for p in packages] == [("jest", "29.7.0"), ("@types/node", "20.1.0")]
        assert packages[0].is_dev is True

    @pytest.mark.anyio
    async def test_tree_from_manifest(self, project_dir):
        tree = await BunAdapter().get_dependency_tree(project_dir)
        assert tree.name == "demo-app"
        assert {c.name for c in tree.children} == {"lodash", "jest"}

    @pytest.mark.anyio
    async def test_tree_ignores_malformed_sections(self, project_dir):
        manifest = {"name": "demo-app", "dependencies": ["lodash"], "devDependencies": {"jest": "^29"}}
        (project_dir / "package.json").write_text(json.dumps(manifest))
        tree = await BunAdapter().get_dependency_tree(project_dir)
        assert [(c.name, c.version) for c in tree.children] == [("jest", "^29")]

    @pytest.mark.anyio
    async def test_set_registry_keeps_inline_table(self, tmp_path):
        config = tmp_path / ".bunfig.toml"
        config.write_text('[install]\nregistry = { url = "https://old.example/", token = "s3cret" }\n')
        bun = BunAdapter(config_path=config)

        await bun.set_registry("https://r.example/")

        assert await bun.get_registry() == "https://r.example/"
        assert 'token = "s3cret"' in config.read_text()

    @pytest.mark.anyio
    async def test_set_registry_inline_table_without_url(self, tmp_path):
        config = tmp_path / ".bunfig.toml"
        config.write_text('[install]\nregistry = { token = "s3cret" }\n')
        bun = BunAdapter(config_path=config)

        await bun.set_registry("https://r.example/")

        assert await bun.get_registry() == "https://r.example/"
        assert 'token = "s3cret"' in config.read_text()

    @pytest.mark.anyio
    async def test_audit_without_npm(self, project_dir):
        with patch("npvm.adapters.bun.shutil.which", return_value=None):
            result = await BunAdapter().audit(project_dir)
        assert result.summary.total == 0

    @pytest.mark.anyio
    async def test_registry_roundtrip(self, tmp_path):
        config = tmp_path / ".bunfig.toml"
        config.write_text('[install]\nregistry = "https://old.example/"\n\n[run]\nbun = true\n')
        bun = BunAdapter(config_path=config)

        await bun.set_registry("https://registry.npmmirror.com/")

        assert await bun.get_registry() == "https://registry.npmmirror.com/"
        text = config.read_text()
        assert "old.example" not in text
        assert "[run]" in text

    @pytest.mark.anyio
    async def test_registry_default_when_missing(self, tmp_path):
        assert await BunAdapter(config_path=tmp_path / "none.toml").get_registry() == (
            "https://registry.npmjs.org/"
        )

    @pytest.mark.anyio
    async def test_set_registry_creates_file(self, tmp_path):
        bun = BunAdapter(config_path=tmp_path / ".bunfig.toml")
        await bun.set_registry("https://r.example/")
        assert await bun.get_registry() == "https://r.example/"

    @pytest.mark.anyio
    async def test_set_registry_validates(self, tmp_path):
        with pytest.raises(ValidationError):
            await BunAdapter(config_path=tmp_path / "b.toml").set_registry("javascript:alert(1)")


# ── audit fix ────────────────────────────────────────────────────────────


class TestAuditFix:
    @pytest.mark.anyio
    async def test_fixed_is_difference(self, project_dir):
        before = {"metadata": {"vulnerabilities": {"high": 3, "total": 3}}}
        after = {"metadata": {"vulnerabilities": {"high": 1, "total": 1}}}
        run = AsyncMock(
            side_effect=[
                _ok(json.dumps(before), returncode=1),
                _ok("fixed 2 of 3 vulnerabilities\n", returncode=1),
                _ok(json.dumps(after), returncode=1),
            ]
        )
        snapshots, sink = _recorder()
        with patch("npvm.adapters.base.run_command", run):
            result = await NpmAdapter().audit_fix(project_dir, sink)

        assert result.fixed == 2
        assert result.remaining.summary.total == 1
        assert result.logs == ["fixed 2 of 3 vulnerabilities\n"]
        assert run.await_args_list[1].args[0] == ["npm", "audit", "fix"]
        assert snapshots[-1].status == "completed"

    @pytest.mark.anyio
    async def test_never_negative(self, project_dir):
        before = {"metadata": {"vulnerabilities": {"low": 1, "total": 1}}}
        after = {"metadata": {"vulnerabilities": {"low": 2, "total": 2}}}
        run = AsyncMock(side_effect=[_ok(json.dumps(before)), _ok(""), _ok(json.dumps(after))])
        with patch("npvm.adapters.base.run_command", run):
            result = await PnpmAdapter().audit_fix(project_dir)
        assert result.fixed == 0
        assert run.await_args_list[1].args[0] == ["pnpm", "audit", "--fix"]
