"""Parser for yarn.lock (classic v1, with tolerance for berry's ``version:`` lines)."""

from __future__ import annotations

import re

from npvm.engines.remote_analyzer.lockfiles.registry import ChildCollector, register_parser
from npvm.models import DependencyNode

_VERSION_LINE = re.compile(r'^\s+version:?\s+"?([^"\s]+)"?\s*$')


def alias_name(alias: str) -> str | None:
    """``"@babel/core@^7.0.0"`` → ``@babel/core``; ``lodash@^4`` → ``lodash``."""
    alias = alias.strip().strip('"').strip("'")
    at = alias.find("@", 1)
    if at <= 0:
        return None
    return alias[:at]


class YarnLockParser:
    lock_type = "yarn"
    file_name = "yarn.lock"
    priority = 20

    def parse(self, content: str) -> DependencyNode:
        collected = ChildCollector()
        current: str | None = None

        for line in content.splitlines():
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            if not line[0].isspace():
                # Header: one or more comma-separated aliases ending with ':'
                current = None
                if line.rstrip().endswith(":"):
                    first_alias = line.rstrip()[:-1].split(",")[0]
                    current = alias_name(first_alias)
                continue
            if current is None:
                continue
            m = _VERSION_LINE.match(line)
            if m:
                collected.add(current, m.group(1))
                current = None
        return collected.root


register_parser(YarnLockParser())
