"""package.json helpers for remote analysis."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from npvm.models import RemotePackageInfo

_RANGE_OPERATORS = re.compile(r"^[\^~><=]+")


@dataclass
class Manifest:
    name: str | None = None
    version: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)


def _str_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def parse_package_json(content: str) -> Manifest:
    """Decode a manifest; malformed JSON yields an empty manifest."""
    try:
        data = json.loads(content)
    except ValueError:
        return Manifest()
    if not isinstance(data, dict):
        return Manifest()
    return Manifest(
        name=data.get("name") if isinstance(data.get("name"), str) else None,
        version=data.get("version") if isinstance(data.get("version"), str) else None,
        dependencies=_str_map(data.get("dependencies")),
        dev_dependencies=_str_map(data.get("devDependencies")),
    )


def clean_version(spec: str) -> str:
    """Strip the leading run of range operators: ``>=1.2.0`` → ``1.2.0``."""
    return _RANGE_OPERATORS.sub("", spec.strip())


def extract_packages(
    dependencies: dict[str, str],
    dev_dependencies: dict[str, str],
) -> list[RemotePackageInfo]:
    packages = [
        RemotePackageInfo(name=name, version=clean_version(spec), is_dev=False)
        for name, spec in dependencies.items()
    ]
    packages.extend(
        RemotePackageInfo(name=name, version=clean_version(spec), is_dev=True)
        for name, spec in dev_dependencies.items()
    )
    return packages
