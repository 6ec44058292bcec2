"""Remote analyzer engine: dependency, vulnerability and update analysis of remote sources."""

from npvm.engines.remote_analyzer.analyzer import RemoteAnalyzer, analyze_remote
from npvm.engines.remote_analyzer.classifier import ParsedInput, parse_git_url, parse_input_type
from npvm.engines.remote_analyzer.lockfiles import parse_lock_file

__all__ = [
    "ParsedInput",
    "RemoteAnalyzer",
    "analyze_remote",
    "parse_git_url",
    "parse_input_type",
    "parse_lock_file",
]
