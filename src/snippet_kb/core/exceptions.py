"""Exception hierarchy for snippet-kb.

All library errors derive from SnippetKBError so callers can catch the
whole family at an API boundary. Expected absences (unknown ids, unknown
tags) are not exceptions: lookups return None or an empty sequence, and
sandbox failures are reported inside ExecutionResult.
"""


class SnippetKBError(Exception):
    """Base class for all snippet-kb errors."""


class ConfigError(SnippetKBError):
    """Configuration could not be loaded or failed validation."""


class ParserError(SnippetKBError):
    """Input could not be read or parsed at all.

    Raised only for hard failures such as a missing ingestion directory.
    Problems inside a document are reported as ParseWarning instead.
    """


class MalformedEntry(SnippetKBError, ValueError):
    """Raw entry fields violate the Entry contract."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class IndexRebuildFailure(SnippetKBError):
    """An index rebuild attempt failed.

    The previously published index snapshot remains valid and serving.
    """


class InvalidStateTransition(SnippetKBError):
    """A sandbox run was moved through an illegal state transition."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal sandbox run transition: {current} -> {target}")
        self.current = current
        self.target = target
