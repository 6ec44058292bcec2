"""Minimal npm registry client (``GET /<package>``)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from npvm.core.config import DEFAULT_NPM_REGISTRY
from npvm.exceptions import NotFoundError, RemoteError
from npvm.models import NpmPackageMeta


@dataclass
class RegistryPackage:
    meta: NpmPackageMeta
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)


def package_url(registry: str, name: str) -> str:
    # Scoped names keep their "@" but the slash must be encoded: @scope%2Fname
    return f"{registry.rstrip('/')}/{quote(name, safe='@')}"


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _person(value: Any) -> str | None:
    if isinstance(value, dict):
        return _text(value.get("name"))
    return _text(value)


def _repository(value: Any) -> str | None:
    if isinstance(value, dict):
        return _text(value.get("url"))
    return _text(value)


def _str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def _latest_tag(document: dict[str, Any]) -> str | None:
    tags = document.get("dist-tags")
    latest = tags.get("latest") if isinstance(tags, dict) else None
    return latest if isinstance(latest, str) else None


class NpmRegistryClient:
    def __init__(self, client: httpx.AsyncClient, registry: str = DEFAULT_NPM_REGISTRY) -> None:
        self._client = client
        self.registry = registry.rstrip("/")

    async def get_document(self, name: str) -> dict[str, Any]:
        """Full packument.

        Raises ``NotFoundError`` on any non-2xx response and ``RemoteError`` when
        the registry is unreachable or its body is not a JSON object.
        """
        url = package_url(self.registry, name)
        try:
            resp = await self._client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise RemoteError(f"registry request failed for {name}: {exc}") from exc
        if not resp.is_success:
            raise NotFoundError(f"package not found: {name} (HTTP {resp.status_code})")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteError(f"registry sent invalid JSON for {name}") from exc
        if not isinstance(data, dict):
            raise RemoteError(f"registry sent an unexpected document for {name}")
        return data

    async def fetch_package(self, name: str) -> RegistryPackage:
        """Metadata of the ``latest`` dist-tag plus its declared dependencies."""
        data = await self.get_document(name)
        latest = _latest_tag(data)
        versions = data.get("versions")
        latest_info = versions.get(latest) if isinstance(versions, dict) and latest else None
        latest_info = latest_info if isinstance(latest_info, dict) else {}
        keywords = data.get("keywords")
        if isinstance(keywords, list):
            keywords = [k for k in keywords if isinstance(k, str)]

        meta = NpmPackageMeta(
            name=data.get("name") if isinstance(data.get("name"), str) else name,
            version=latest or "0.0.0",
            description=_text(data.get("description")),
            author=_person(data.get("author")),
            license=_text(data.get("license")),
            homepage=_text(data.get("homepage")),
            repository=_repository(data.get("repository")),
            keywords=keywords if isinstance(keywords, list) else None,
        )
        return RegistryPackage(
            meta=meta,
            dependencies=_str_map(latest_info.get("dependencies")),
            dev_dependencies=_str_map(latest_info.get("devDependencies")),
        )

    async def latest_version(self, name: str) -> str | None:
        return _latest_tag(await self.get_document(name))
