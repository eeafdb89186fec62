"""Data models for sandbox execution.

This module provides the immutable ExecutionResult returned by every
sandbox run, the per-run state machine, and the expected-output
comparison helper.

Run lifecycle:
    IDLE -> RUNNING -> COMPLETED | FAILED | TIMED_OUT | CANCELLED

Terminal states are final; running the same entry again creates a new
SandboxRun.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

from snippet_kb.core.exceptions import InvalidStateTransition

if TYPE_CHECKING:
    from snippet_kb.knowledge.models import Entry

TIMEOUT_ERROR: Final = "TimeoutError"
SANDBOX_ERROR: Final = "SandboxError"


class RunState(str, Enum):
    """State of a single sandbox run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is allowed."""
        return self in TERMINAL_STATES


TERMINAL_STATES: Final = frozenset(
    {RunState.COMPLETED, RunState.FAILED, RunState.TIMED_OUT, RunState.CANCELLED}
)

_TRANSITIONS: Final[dict[RunState, frozenset[RunState]]] = {
    RunState.IDLE: frozenset({RunState.RUNNING}),
    RunState.RUNNING: TERMINAL_STATES,
}


@dataclass(frozen=True)
class ExecutionError:
    """Normalized error raised by, or on behalf of, a snippet.

    Attributes:
        name: Error class name (e.g. "ReferenceError", "TimeoutError",
            "SandboxError" for failures of the sandbox itself).
        message: Error message without stack trace.

    """

    name: str
    message: str

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one sandbox run.

    Attributes:
        stdout_lines: Lines printed through console.log, up to the point of
            completion, error or timeout.
        error: Captured error, or None on success.
        timed_out: True if the run exceeded its time budget.
        state: Terminal run state.
        stderr_lines: Lines printed through console.warn / console.error.
        duration_ms: Wall-clock duration of the run.
        entry_id: Id of the entry that was executed.

    """

    stdout_lines: tuple[str, ...] = ()
    error: ExecutionError | None = None
    timed_out: bool = False
    state: RunState = RunState.COMPLETED
    stderr_lines: tuple[str, ...] = ()
    duration_ms: float = 0.0
    entry_id: str | None = None

    @property
    def ok(self) -> bool:
        """True if the snippet ran to completion without error."""
        return self.state is RunState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entry_id": self.entry_id,
            "state": self.state.value,
            "stdout_lines": list(self.stdout_lines),
            "stderr_lines": list(self.stderr_lines),
            "error": (
                {"name": self.error.name, "message": self.error.message} if self.error else None
            ),
            "timed_out": self.timed_out,
            "duration_ms": round(self.duration_ms, 3),
        }


def state_for(error: ExecutionError | None, timed_out: bool) -> RunState:
    """Terminal state implied by a run outcome."""
    if timed_out:
        return RunState.TIMED_OUT
    if error is not None:
        return RunState.FAILED
    return RunState.COMPLETED


class SandboxRun:
    """State tracker for one sandbox invocation.

    Attributes:
        entry_id: Entry being executed.

    """

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        self._state = RunState.IDLE
        self._started_at: float | None = None
        self._result: ExecutionResult | None = None

    @property
    def state(self) -> RunState:
        """Current state."""
        return self._state

    @property
    def result(self) -> ExecutionResult | None:
        """Final result once the run reached COMPLETED, FAILED or TIMED_OUT."""
        return self._result

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since start() (0 before start)."""
        if self._started_at is None:
            return 0.0
        return (time.monotonic() - self._started_at) * 1000.0

    def _transition(self, target: RunState) -> None:
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise InvalidStateTransition(self._state.value, target.value)
        self._state = target

    def start(self) -> None:
        """Move from IDLE to RUNNING."""
        self._transition(RunState.RUNNING)
        self._started_at = time.monotonic()

    def finish(self, result: ExecutionResult) -> ExecutionResult:
        """Move to the terminal state carried by result and record it."""
        self._transition(result.state)
        self._result = result
        return result

    def cancel(self) -> None:
        """Move from RUNNING to CANCELLED."""
        self._transition(RunState.CANCELLED)


def matches(result: ExecutionResult, entry: Entry) -> bool:
    """Compare captured stdout with an entry's expected output.

    Ordered, line-by-line equality. An entry without expected output has
    nothing to assert, so it always matches.

    """
    if entry.expected_output is None:
        return True
    return tuple(result.stdout_lines) == tuple(entry.expected_output)
