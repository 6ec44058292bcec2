"""Normalize backend audit payloads into one :class:`AuditResult`.

Three raw shapes are understood:

* advisory-keyed objects (npm v6, pnpm): ``{"advisories": {id: advisory}, "metadata": ...}``
* vulnerability-keyed objects (npm v7+): ``{"vulnerabilities": {pkg: {"via": [...]}}}``
* typed NDJSON stream records (yarn classic): ``auditAdvisory`` / ``auditSummary`` lines
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from npvm.models import (
    SEVERITIES,
    AuditResult,
    AuditSummary,
    Severity,
    VulnerabilityInfo,
)

log = structlog.get_logger("npvm.audit")

DEFAULT_RECOMMENDATION = "Update to latest version"

_SEVERITY_ALIASES: dict[str, Severity] = {"medium": "moderate"}


def normalize_severity(value: Any) -> Severity:
    """Map an upstream severity onto the unified taxonomy; unknown → ``moderate``."""
    if not isinstance(value, str):
        return "moderate"
    s = value.strip().lower()
    if s in SEVERITIES:
        return s  # type: ignore[return-value]
    return _SEVERITY_ALIASES.get(s, "moderate")


def empty_audit() -> AuditResult:
    return AuditResult()


def summarize(
    vulnerabilities: list[VulnerabilityInfo],
    counts: dict[str, Any] | None = None,
) -> AuditSummary:
    """Prefer the backend's own aggregate *counts*; derive them from the list otherwise."""
    if counts:
        summary = AuditSummary(
            critical=_as_int(counts.get("critical")),
            high=_as_int(counts.get("high")),
            moderate=_as_int(counts.get("moderate")),
            low=_as_int(counts.get("low")),
        )
        summary.total = _as_int(counts.get("total")) or len(vulnerabilities)
        return summary

    summary = AuditSummary(total=len(vulnerabilities))
    for vuln in vulnerabilities:
        setattr(summary, vuln.severity, getattr(summary, vuln.severity) + 1)
    return summary


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class _Collector:
    """Accumulates vulnerabilities, one per distinct (advisory, package)."""

    def __init__(self) -> None:
        self.items: list[VulnerabilityInfo] = []
        self._seen: set[tuple[str, str]] = set()

    def add(self, vuln: VulnerabilityInfo) -> None:
        key = (vuln.id, vuln.package)
        if key in self._seen:
            return
        self._seen.add(key)
        self.items.append(vuln)


def _advisory_to_vuln(advisory: dict[str, Any]) -> VulnerabilityInfo:
    recommendation = advisory.get("recommendation")
    if not recommendation and advisory.get("patched_versions"):
        recommendation = f"Upgrade to version {advisory['patched_versions']}"
    return VulnerabilityInfo(
        id=str(advisory.get("id") or advisory.get("github_advisory_id") or "unknown"),
        title=advisory.get("title") or "Unknown vulnerability",
        severity=normalize_severity(advisory.get("severity")),
        package=advisory.get("module_name") or "unknown",
        version=advisory.get("vulnerable_versions") or "*",
        recommendation=recommendation or DEFAULT_RECOMMENDATION,
        url=advisory.get("url"),
    )


def parse_npm_audit(data: dict[str, Any]) -> AuditResult:
    """Handle both npm v7+ (``vulnerabilities``) and v6/pnpm (``advisories``) payloads."""
    found = _Collector()

    vulnerabilities = data.get("vulnerabilities")
    if isinstance(vulnerabilities, dict):
        for pkg_name, vuln in vulnerabilities.items():
            if not isinstance(vuln, dict):
                continue
            fix = vuln.get("fixAvailable")
            if isinstance(fix, dict) and fix.get("name"):
                recommendation = f"Update to {fix['name']}@{fix.get('version', 'latest')}"
            else:
                recommendation = DEFAULT_RECOMMENDATION
            via_list = vuln.get("via")
            for via in via_list if isinstance(via_list, list) else []:
                # String entries name another vulnerable package, not an advisory.
                if not isinstance(via, dict) or not via.get("title"):
                    continue
                found.add(
                    VulnerabilityInfo(
                        id=str(via.get("source") or via.get("cve") or "unknown"),
                        title=via["title"],
                        severity=normalize_severity(via.get("severity") or vuln.get("severity")),
                        package=pkg_name,
                        version=vuln.get("range") or via.get("range") or "*",
                        recommendation=recommendation,
                        url=via.get("url"),
                    )
                )

    advisories = data.get("advisories")
    if isinstance(advisories, dict):
        for advisory in advisories.values():
            if isinstance(advisory, dict):
                found.add(_advisory_to_vuln(advisory))

    metadata = data.get("metadata")
    counts = metadata.get("vulnerabilities") if isinstance(metadata, dict) else None
    return AuditResult(
        vulnerabilities=found.items,
        summary=summarize(found.items, counts if isinstance(counts, dict) else None),
    )


def parse_yarn_audit(stdout: str) -> AuditResult:
    """Parse ``yarn audit --json`` NDJSON; malformed lines are skipped."""
    found = _Collector()
    counts: dict[str, Any] | None = None

    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            log.debug("yarn.audit_bad_line", line=line[:100])
            continue
        if not isinstance(record, dict):
            continue
        payload = record.get("data")
        if not isinstance(payload, dict):
            continue
        if record.get("type") == "auditAdvisory":
            advisory = payload.get("advisory")
            if isinstance(advisory, dict):
                found.add(_advisory_to_vuln(advisory))
        elif record.get("type") == "auditSummary":
            vulns = payload.get("vulnerabilities")
            if isinstance(vulns, dict):
                counts = dict(vulns)
                counts.setdefault("total", sum(_as_int(vulns.get(s)) for s in vulns))

    return AuditResult(vulnerabilities=found.items, summary=summarize(found.items, counts))


def parse_audit_json(stdout: str) -> AuditResult:
    """Decode a single JSON document and normalize it; empty/garbage → empty result."""
    if not stdout or not stdout.strip():
        return empty_audit()
    try:
        data = json.loads(stdout)
    except ValueError:
        log.debug("audit.bad_json", size=len(stdout))
        return empty_audit()
    if not isinstance(data, dict):
        return empty_audit()
    return parse_npm_audit(data)
