"""Lock-file parsers: auto-registered on import."""

from npvm.engines.remote_analyzer.lockfiles import (
    npm_lock,  # noqa: F401
    pnpm_lock,  # noqa: F401
    yarn_lock,  # noqa: F401
)
from npvm.engines.remote_analyzer.lockfiles.registry import (
    PARSER_REGISTRY,
    LockFileParser,
    detection_order,
    parse_lock_file,
)

__all__ = ["PARSER_REGISTRY", "LockFileParser", "detection_order", "parse_lock_file"]
