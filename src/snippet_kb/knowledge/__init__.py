"""Knowledge base: entry model, parsing, indexing, storage and queries.

Public API:
    Entry: Immutable knowledge entry
    validate_entry: Build a validated Entry from raw fields
    extract: Parse a raw document into entries and warnings
    KnowledgeIndex / build_index: Immutable inverted index snapshots
    QueryEngine: by_tag, search, sample and unseen_for queries
    EntryStore / InMemoryEntryStore: Storage boundary
    SeenSetProvider / InMemorySeenSetProvider: Learner progress lookup
    KnowledgeBase: Facade owning store, index and query engine
"""

from snippet_kb.knowledge.models import (
    Difficulty,
    Entry,
    ParseWarning,
    Query,
    QueryResult,
    normalize_tags,
    validate_entry,
)
from snippet_kb.knowledge.index import KnowledgeIndex, build_index
from snippet_kb.knowledge.parser import ExtractionResult, extract, extract_directory, extract_file
from snippet_kb.knowledge.seen import InMemorySeenSetProvider, SeenSetProvider
from snippet_kb.knowledge.store import EntryStore, InMemoryEntryStore
from snippet_kb.knowledge.query import QueryEngine
from snippet_kb.knowledge.engine import IngestReport, KnowledgeBase, VerificationOutcome

__all__ = [
    "Difficulty",
    "Entry",
    "EntryStore",
    "ExtractionResult",
    "InMemoryEntryStore",
    "InMemorySeenSetProvider",
    "IngestReport",
    "KnowledgeBase",
    "KnowledgeIndex",
    "ParseWarning",
    "Query",
    "QueryEngine",
    "QueryResult",
    "SeenSetProvider",
    "VerificationOutcome",
    "build_index",
    "extract",
    "extract_directory",
    "extract_file",
    "normalize_tags",
    "validate_entry",
]
