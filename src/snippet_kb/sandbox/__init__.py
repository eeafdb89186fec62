"""Sandbox execution of entry snippets.

Public API:
    SandboxRunner: Runs entry code in isolated, time-bounded node processes
    ExecutionResult: Immutable outcome of one run
    ExecutionError: Normalized snippet or sandbox error
    RunState / SandboxRun: Per-run state machine
    matches: Compare a run's stdout with an entry's expected output
"""

from snippet_kb.sandbox.models import (
    ExecutionError,
    ExecutionResult,
    RunState,
    SandboxRun,
    matches,
)
from snippet_kb.sandbox.runner import SandboxRunner

__all__ = [
    "ExecutionError",
    "ExecutionResult",
    "RunState",
    "SandboxRun",
    "SandboxRunner",
    "matches",
]
