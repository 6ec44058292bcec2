"""Cross-reference packages against the OSV vulnerability database."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from npvm.adapters.audit import normalize_severity
from npvm.core.config import DEFAULT_OSV_API
from npvm.models import Severity, VulnerabilityInfo

log = structlog.get_logger("npvm.remote")

OSV_ECOSYSTEM = "npm"
NO_FIX = "No fix available"


def osv_severity(vuln: dict[str, Any]) -> Severity:
    """``database_specific.severity`` first, then a plain-string ``severity``."""
    db_specific = vuln.get("database_specific")
    if isinstance(db_specific, dict) and isinstance(db_specific.get("severity"), str):
        return normalize_severity(db_specific["severity"])
    return normalize_severity(vuln.get("severity"))


def _dicts(value: Any) -> list[dict[str, Any]]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


def first_fixed_version(vuln: dict[str, Any]) -> str | None:
    for affected in _dicts(vuln.get("affected")):
        for rng in _dicts(affected.get("ranges")):
            for event in _dicts(rng.get("events")):
                if event.get("fixed"):
                    return str(event["fixed"])
    return None


def to_vulnerability(vuln: dict[str, Any], name: str, version: str) -> VulnerabilityInfo:
    fixed = first_fixed_version(vuln)
    references = _dicts(vuln.get("references"))
    url = references[0].get("url") if references else None
    summary = vuln.get("summary")
    if not isinstance(summary, str) or not summary:
        summary = str(vuln.get("id") or "Unknown vulnerability")
    return VulnerabilityInfo(
        id=str(vuln.get("id") or "unknown"),
        title=summary,
        severity=osv_severity(vuln),
        package=name,
        version=version,
        recommendation=f"Upgrade to {fixed}" if fixed else NO_FIX,
        url=url if isinstance(url, str) else None,
    )


def _vulns_of(result: Any) -> list[dict[str, Any]]:
    return _dicts(result.get("vulns")) if isinstance(result, dict) else []


class VulnerabilityChecker:
    """One batched OSV query for a list of ``{name, version}`` packages.

    ``querybatch`` only returns advisory ids, so records without details are
    hydrated through ``GET /vulns/{id}`` (concurrently, each failure isolated).
    Any failure of the batch call itself, including a reply of the wrong
    shape, yields an empty list.
    """

    def __init__(self, client: httpx.AsyncClient, osv_api: str = DEFAULT_OSV_API) -> None:
        self._client = client
        self.osv_api = osv_api.rstrip("/")

    async def check(self, packages: list[dict[str, str]]) -> list[VulnerabilityInfo]:
        if not packages:
            return []
        try:
            results = await self._query_batch(packages)
            details = await self._hydrate(results)
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("osv.query_failed", packages=len(packages), error=str(exc))
            return []

        found: list[VulnerabilityInfo] = []
        for pkg, result in zip(packages, results):
            for sparse in _vulns_of(result):
                vuln = details.get(str(sparse.get("id")), sparse)
                found.append(to_vulnerability(vuln, pkg["name"], pkg["version"]))
        log.info("osv.checked", packages=len(packages), vulnerabilities=len(found))
        return found

    async def _query_batch(self, packages: list[dict[str, str]]) -> list[Any]:
        queries = [
            {"package": {"name": p["name"], "ecosystem": OSV_ECOSYSTEM}, "version": p["version"]}
            for p in packages
        ]
        resp = await self._client.post(f"{self.osv_api}/querybatch", json={"queries": queries})
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected querybatch reply: {type(data).__name__}")
        results = data.get("results")
        return results if isinstance(results, list) else []

    async def _hydrate(self, results: list[Any]) -> dict[str, dict[str, Any]]:
        sparse_ids = {
            str(v["id"])
            for result in results
            for v in _vulns_of(result)
            if v.get("id") and "summary" not in v and "affected" not in v
        }
        if not sparse_ids:
            return {}
        ids = sorted(sparse_ids)
        fetched = await asyncio.gather(*(self._get_vuln(vid) for vid in ids))
        return {vid: data for vid, data in zip(ids, fetched) if data is not None}

    async def _get_vuln(self, vuln_id: str) -> dict[str, Any] | None:
        try:
            resp = await self._client.get(f"{self.osv_api}/vulns/{vuln_id}")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.debug("osv.vuln_fetch_failed", id=vuln_id, error=str(exc))
            return None
        return data if isinstance(data, dict) else None
