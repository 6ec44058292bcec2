"""Result shapes shared by the adapters and the remote analyzer.

Attributes are snake_case in Python; ``to_api()`` / ``model_dump(by_alias=True)``
produce the camelCase wire form consumed by the UI/API layer.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PackageManagerType = Literal["npm", "yarn", "pnpm", "bun"]
Severity = Literal["critical", "high", "moderate", "low"]
OperationType = Literal["install", "uninstall", "update", "audit"]
OperationStatus = Literal["pending", "running", "completed", "failed"]
GitPlatform = Literal["github", "gitlab"]
RemoteSourceType = Literal["git", "npm"]
LockFileType = Literal["npm", "yarn", "pnpm"]

SEVERITIES: tuple[Severity, ...] = ("critical", "high", "moderate", "low")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


def now_ms() -> int:
    return int(time.time() * 1000)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ── package managers ─────────────────────────────────────────────────────


class PackageManagerInfo(ApiModel):
    type: PackageManagerType
    version: str = ""
    path: str = ""
    available: bool = False


class InstalledPackage(ApiModel):
    name: str
    version: str
    is_dev: bool = False
    is_peer: bool = False
    has_update: bool = False
    latest_version: str | None = None


class DependencyNode(ApiModel):
    """One node of a dependency tree. A node is never its own ancestor."""

    name: str
    version: str
    children: list[DependencyNode] = Field(default_factory=list)
    is_circular: bool | None = None

    @classmethod
    def empty_root(cls) -> DependencyNode:
        return cls(name="root", version="0.0.0")


DependencyNode.model_rebuild()


class WorkspaceInfo(ApiModel):
    is_workspace: bool = False
    packages: list[str] | None = None


class RegistryConfig(ApiModel):
    name: str
    url: str
    description: str | None = None


REGISTRIES: list[RegistryConfig] = [
    RegistryConfig(name="npm", url="https://registry.npmjs.org/", description="Official npm registry"),
    RegistryConfig(name="yarn", url="https://registry.yarnpkg.com/", description="Yarn registry mirror"),
    RegistryConfig(name="npmmirror", url="https://registry.npmmirror.com/", description="npmmirror (China)"),
    RegistryConfig(name="tencent", url="https://mirrors.cloud.tencent.com/npm/", description="Tencent Cloud mirror"),
]


# ── audit ────────────────────────────────────────────────────────────────


class VulnerabilityInfo(ApiModel):
    id: str
    title: str
    severity: Severity = "moderate"
    package: str
    version: str
    recommendation: str
    url: str | None = None


class AuditSummary(ApiModel):
    critical: int = 0
    high: int = 0
    moderate: int = 0
    low: int = 0
    total: int = 0


class AuditResult(ApiModel):
    vulnerabilities: list[VulnerabilityInfo] = Field(default_factory=list)
    summary: AuditSummary = Field(default_factory=AuditSummary)


class AuditFixResult(ApiModel):
    fixed: int = 0
    remaining: AuditResult = Field(default_factory=AuditResult)
    logs: list[str] = Field(default_factory=list)


# ── progress ─────────────────────────────────────────────────────────────


class OperationProgress(ApiModel):
    """Mutable record of one long-running operation; single writer."""

    id: str
    type: OperationType
    status: OperationStatus = "pending"
    package: str | None = None
    progress: int = 0
    message: str = ""
    logs: list[str] = Field(default_factory=list)
    started_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ── remote analysis ──────────────────────────────────────────────────────


class RemoteRepoInfo(ApiModel):
    platform: GitPlatform
    owner: str
    repo: str
    branch: str | None = None


class NpmPackageMeta(ApiModel):
    name: str
    version: str
    description: str | None = None
    author: str | None = None
    license: str | None = None
    homepage: str | None = None
    repository: str | None = None
    keywords: list[str] | None = None


class RemotePackageInfo(ApiModel):
    name: str
    version: str
    is_dev: bool = False


class RemoteUpdateInfo(ApiModel):
    name: str
    current_version: str
    latest_version: str
    has_update: bool = False


class RemoteAnalysisResult(ApiModel):
    source_type: RemoteSourceType
    repo_info: RemoteRepoInfo | None = None
    package_meta: NpmPackageMeta | None = None
    packages: list[RemotePackageInfo] = Field(default_factory=list)
    dependency_tree: DependencyNode | None = None
    vulnerabilities: list[VulnerabilityInfo] = Field(default_factory=list)
    updates: list[RemoteUpdateInfo] = Field(default_factory=list)
    lock_file_type: LockFileType | None = None
