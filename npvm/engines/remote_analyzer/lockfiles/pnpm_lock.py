"""Parser for pnpm-lock.yaml, reading only its top-level ``packages:`` block."""

from __future__ import annotations

import re

from npvm.engines.remote_analyzer.lockfiles.registry import ChildCollector, register_parser
from npvm.models import DependencyNode

# v6+/v9:  /name@1.2.3:  or  'name@1.2.3(peer@1.0.0)':
_AT_ENTRY = re.compile(r"^\s+['\"]?/?([@\w\-./]+)@(\d+\.\d+\.\d+[^'\":(\s]*)")
# v5:  /name/1.2.3:  or  /@scope/name/1.2.3:
_SLASH_ENTRY = re.compile(r"^\s+['\"]?/((?:@[^/\s]+/)?[^/@\s]+)/(\d+\.\d+\.\d+[^'\":(_\s]*)")


class PnpmLockParser:
    lock_type = "pnpm"
    file_name = "pnpm-lock.yaml"
    priority = 10

    def parse(self, content: str) -> DependencyNode:
        collected = ChildCollector()
        in_packages = False

        for line in content.splitlines():
            if not in_packages:
                if line.rstrip() == "packages:":
                    in_packages = True
                continue
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            if not line[0].isspace():
                # Back at column 0: the block has ended.
                break
            m = _AT_ENTRY.match(line) or _SLASH_ENTRY.match(line)
            if m:
                collected.add(m.group(1), m.group(2))
        return collected.root


register_parser(PnpmLockParser())
