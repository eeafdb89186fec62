"""snippet-kb: knowledge-base engine for annotated code snippets.

Ingests short code-note documents, validates them into immutable entries,
indexes them by tag, topic and difficulty, answers structured queries and
optionally runs JavaScript examples in an isolated sandbox.

Usage:
    from snippet_kb import KnowledgeBase, SandboxRunner

    kb = KnowledgeBase()
    report = kb.ingest_text(document, "notes/closures.md")
    result = kb.query.by_tag("closures")

    runner = SandboxRunner()
    outcomes = kb.verify(runner)
"""

from snippet_kb.core.config import (
    ParserConfig,
    SandboxConfig,
    SnippetKBConfig,
    load_config,
)
from snippet_kb.core.exceptions import (
    ConfigError,
    IndexRebuildFailure,
    InvalidStateTransition,
    MalformedEntry,
    ParserError,
    SnippetKBError,
)
from snippet_kb.knowledge import (
    Difficulty,
    Entry,
    EntryStore,
    InMemoryEntryStore,
    InMemorySeenSetProvider,
    IngestReport,
    KnowledgeBase,
    KnowledgeIndex,
    ParseWarning,
    QueryEngine,
    QueryResult,
    SeenSetProvider,
    build_index,
    extract,
    validate_entry,
)
from snippet_kb.sandbox import (
    ExecutionError,
    ExecutionResult,
    RunState,
    SandboxRunner,
    matches,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "Difficulty",
    "Entry",
    "EntryStore",
    "ExecutionError",
    "ExecutionResult",
    "IndexRebuildFailure",
    "InMemoryEntryStore",
    "InMemorySeenSetProvider",
    "IngestReport",
    "InvalidStateTransition",
    "KnowledgeBase",
    "KnowledgeIndex",
    "MalformedEntry",
    "ParseWarning",
    "ParserConfig",
    "ParserError",
    "QueryEngine",
    "QueryResult",
    "RunState",
    "SandboxConfig",
    "SandboxRunner",
    "SeenSetProvider",
    "SnippetKBConfig",
    "SnippetKBError",
    "build_index",
    "extract",
    "load_config",
    "matches",
    "validate_entry",
]
