"""Lock-file parser registry: map lock types to parsers and detection order."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import structlog

from npvm.models import DependencyNode, LockFileType

log = structlog.get_logger("npvm.remote")


@runtime_checkable
class LockFileParser(Protocol):
    """Interface that every lock-file parser must satisfy.

    ``parse`` returns a root ``{name: 'root', version: '0.0.0'}`` whose children
    are the direct dependencies only, unique by name (first occurrence wins).
    It never raises.
    """

    lock_type: LockFileType
    file_name: str
    # Lower is tried first: most deterministic lock formats come first.
    priority: int

    def parse(self, content: str) -> DependencyNode: ...


PARSER_REGISTRY: dict[str, LockFileParser] = {}


def register_parser(parser: LockFileParser) -> None:
    """Register a parser instance by its lock_type."""
    PARSER_REGISTRY[parser.lock_type] = parser


def detection_order() -> list[LockFileParser]:
    return sorted(PARSER_REGISTRY.values(), key=lambda p: p.priority)


class ChildCollector:
    """Builds the shallow root, keeping the first occurrence of each name."""

    def __init__(self) -> None:
        self.root = DependencyNode.empty_root()
        self._seen: set[str] = set()

    def add(self, name: str, version: str) -> None:
        if not name or name in self._seen:
            return
        self._seen.add(name)
        self.root.children.append(DependencyNode(name=name, version=version))


def parse_lock_file(content: str, lock_type: str) -> DependencyNode:
    parser = PARSER_REGISTRY.get(lock_type)
    if parser is None:
        return DependencyNode.empty_root()
    try:
        return parser.parse(content)
    except Exception:
        # Parsers are expected to degrade on their own; this is the last guard.
        log.warning("lockfile.parser_crashed", lock_type=lock_type, exc_info=True)
        return DependencyNode.empty_root()
