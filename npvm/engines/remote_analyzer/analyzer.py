"""RemoteAnalyzer: analyze a registry package or a hosted repository without cloning."""

from __future__ import annotations

import asyncio

import httpx
import structlog

from npvm.core.config import Settings
from npvm.core.security import validate_branch_name, validate_url
from npvm.engines.remote_analyzer.classifier import parse_git_url, parse_input_type
from npvm.engines.remote_analyzer.fetcher import RepoFileFetcher
from npvm.engines.remote_analyzer.http import create_http_client
from npvm.engines.remote_analyzer.lockfiles import detection_order, parse_lock_file
from npvm.engines.remote_analyzer.manifest import extract_packages, parse_package_json
from npvm.engines.remote_analyzer.npm_registry import NpmRegistryClient
from npvm.engines.remote_analyzer.updates import UpdateChecker
from npvm.engines.remote_analyzer.vulnerabilities import VulnerabilityChecker
from npvm.exceptions import NotFoundError
from npvm.models import (
    DependencyNode,
    LockFileType,
    RemoteAnalysisResult,
    RemotePackageInfo,
    RemoteRepoInfo,
    RemoteUpdateInfo,
    VulnerabilityInfo,
)

log = structlog.get_logger("npvm.remote")


class RemoteAnalyzer:
    """Compose classifier, fetcher, lock parsers and checkers into one result.

    Pass an ``httpx.AsyncClient`` to share a connection pool (or to test with a
    mock transport); otherwise one is created and owned by the analyzer.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._owns_client = client is None
        self._client = client or create_http_client(self.settings)
        self.fetcher = RepoFileFetcher(
            self._client,
            github_token=self.settings.github_token,
            gitlab_token=self.settings.gitlab_token,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RemoteAnalyzer:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def analyze(self, raw_input: str, branch: str | None = None) -> RemoteAnalysisResult:
        """Unified entry point: package name, package-site URL, or git URL."""
        parsed = parse_input_type(raw_input)
        log.info("remote.analyze", input_type=parsed.type, value=parsed.value)
        if parsed.type in ("npm-package", "npm-site-url"):
            return await self.analyze_package(parsed.value, parsed.registry)
        return await self.analyze_repository(parsed.value, branch)

    async def analyze_package(
        self, name: str, registry: str | None = None
    ) -> RemoteAnalysisResult:
        registry_url = registry or self.settings.npm_registry
        validate_url(registry_url)
        npm = NpmRegistryClient(self._client, registry_url)

        info = await npm.fetch_package(name)
        packages = extract_packages(info.dependencies, info.dev_dependencies)

        # One level deep, runtime dependencies only.
        tree = DependencyNode(
            name=info.meta.name,
            version=info.meta.version,
            children=[
                DependencyNode(name=p.name, version=p.version) for p in packages if not p.is_dev
            ],
        )
        vulnerabilities, updates = await self._check(packages, npm)
        return RemoteAnalysisResult(
            source_type="npm",
            package_meta=info.meta,
            packages=packages,
            dependency_tree=tree,
            vulnerabilities=vulnerabilities,
            updates=updates,
        )

    async def analyze_repository(
        self, repo_url: str, branch: str | None = None
    ) -> RemoteAnalysisResult:
        repo = parse_git_url(repo_url)
        if branch:
            repo.branch = branch
        if repo.branch:
            validate_branch_name(repo.branch)

        content = await self.fetcher.fetch(repo, "package.json")
        if content is None:
            log.warning("remote.manifest_missing", owner=repo.owner, repo=repo.repo)
            raise NotFoundError("package.json not found in repository")

        manifest = parse_package_json(content)
        packages = extract_packages(manifest.dependencies, manifest.dev_dependencies)

        tree: DependencyNode | None = None
        lock_type: LockFileType | None = None
        lock = await self.detect_lock_file(repo)
        if lock is not None:
            lock_type, lock_content = lock
            tree = parse_lock_file(lock_content, lock_type)
            tree.name = manifest.name or tree.name
            tree.version = manifest.version or tree.version

        npm = NpmRegistryClient(self._client, self.settings.npm_registry)
        vulnerabilities, updates = await self._check(packages, npm)
        return RemoteAnalysisResult(
            source_type="git",
            repo_info=repo,
            packages=packages,
            dependency_tree=tree,
            vulnerabilities=vulnerabilities,
            updates=updates,
            lock_file_type=lock_type,
        )

    async def detect_lock_file(self, repo: RemoteRepoInfo) -> tuple[LockFileType, str] | None:
        """First lock file present, in parser priority order (pnpm, yarn, npm)."""
        for parser in detection_order():
            content = await self.fetcher.fetch(repo, parser.file_name)
            if content:
                log.info("remote.lock_found", lock_type=parser.lock_type)
                return parser.lock_type, content
        return None

    # ── internal ───────────────────────────────────────────────────────────

    async def _check(
        self, packages: list[RemotePackageInfo], npm: NpmRegistryClient
    ) -> tuple[list[VulnerabilityInfo], list[RemoteUpdateInfo]]:
        capped = [
            {"name": p.name, "version": p.version}
            for p in packages[: self.settings.max_check_packages]
        ]
        vulnerabilities, updates = await asyncio.gather(
            VulnerabilityChecker(self._client, self.settings.osv_api).check(capped),
            UpdateChecker(npm).check(capped),
        )
        return vulnerabilities, updates


async def analyze_remote(
    raw_input: str,
    branch: str | None = None,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> RemoteAnalysisResult:
    """One-shot helper around :class:`RemoteAnalyzer`."""
    async with RemoteAnalyzer(settings, client) as analyzer:
        return await analyzer.analyze(raw_input, branch)
