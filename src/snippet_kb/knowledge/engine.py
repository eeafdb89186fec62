"""Knowledge base facade tying store, index, queries and sandbox together.

KnowledgeBase owns the index: writers (add, remove, ingest) go through
the store and then trigger a rebuild. Rebuilds are serialized by a lock
and build a fresh snapshot off to the side; the published reference is
swapped only when the build succeeds.

Usage:
    from snippet_kb.knowledge.engine import KnowledgeBase
    from snippet_kb.sandbox import SandboxRunner

    kb = KnowledgeBase()
    report = kb.ingest_text(document, "notes/closures.md")
    for warning in report.warnings:
        print(warning)

    closures = kb.query.by_tag("closures")
    outcomes = kb.verify(SandboxRunner())
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

from snippet_kb.core.config import SnippetKBConfig
from snippet_kb.core.exceptions import IndexRebuildFailure
from snippet_kb.knowledge.index import KnowledgeIndex, build_index
from snippet_kb.knowledge.models import Entry, ParseWarning
from snippet_kb.knowledge.parser import (
    DEFAULT_DOCUMENT_PATTERN,
    ExtractionResult,
    extract,
    extract_directory,
    extract_file,
)
from snippet_kb.knowledge.query import QueryEngine
from snippet_kb.knowledge.seen import SeenSetProvider
from snippet_kb.knowledge.store import EntryStore, InMemoryEntryStore

if TYPE_CHECKING:
    from snippet_kb.sandbox.models import ExecutionResult
    from snippet_kb.sandbox.runner import SandboxRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestReport:
    """Outcome of an ingestion call.

    Attributes:
        entries: Entries inserted into the store, in source order.
        warnings: Problems found while parsing.
        generation: Index generation published after the insert.

    """

    entries: tuple[Entry, ...] = field(default_factory=tuple)
    warnings: tuple[ParseWarning, ...] = field(default_factory=tuple)
    generation: int = 0

    @property
    def ok(self) -> bool:
        """True when ingestion produced no warnings."""
        return not self.warnings


@dataclass(frozen=True)
class VerificationOutcome:
    """Sandbox result for one entry and whether it matched expectations.

    matched only compares stdout, so it is trivially true for entries
    without expected output. passed is the verdict to report: it also
    fails runs that timed out, crashed the sandbox, or threw without
    declaring the output they print before throwing.
    """

    entry: Entry
    result: ExecutionResult
    matched: bool

    @property
    def passed(self) -> bool:
        """Whether this entry verified cleanly."""
        from snippet_kb.sandbox.models import SANDBOX_ERROR, RunState

        if not self.matched:
            return False
        if self.result.ok:
            return True
        # Snippets may throw on purpose once they printed what they declare
        return (
            self.result.state is RunState.FAILED
            and self.entry.expected_output is not None
            and self.result.error is not None
            and self.result.error.name != SANDBOX_ERROR
        )


class KnowledgeBase:
    """Read-mostly knowledge base over an EntryStore.

    Args:
        store: Entry store backend (in-memory if None).
        seen_provider: Seen-set provider used by unseen_for queries.
        config: Configuration (defaults if None).

    """

    def __init__(
        self,
        store: EntryStore | None = None,
        seen_provider: SeenSetProvider | None = None,
        config: SnippetKBConfig | None = None,
    ) -> None:
        self._config = config or SnippetKBConfig()
        self._store = store if store is not None else InMemoryEntryStore()
        self._rebuild_lock = Lock()
        self._index = KnowledgeIndex()
        self._query = QueryEngine(lambda: self._index, seen_provider)
        self.rebuild()

    @property
    def config(self) -> SnippetKBConfig:
        """Active configuration."""
        return self._config

    @property
    def store(self) -> EntryStore:
        """Underlying entry store."""
        return self._store

    @property
    def index(self) -> KnowledgeIndex:
        """Most recently published index snapshot."""
        return self._index

    @property
    def query(self) -> QueryEngine:
        """Query engine bound to the latest index snapshot."""
        return self._query

    def lookup_by_id(self, entry_id: str) -> Entry | None:
        """Get an entry from the current snapshot, or None."""
        return self._index.lookup_by_id(entry_id)

    def rebuild(self) -> KnowledgeIndex:
        """Rebuild the index from the store and publish it.

        Only one rebuild runs at a time. Readers keep using the previous
        snapshot until the new one is complete.

        Returns:
            The newly published snapshot.

        Raises:
            IndexRebuildFailure: If the build fails. The previous snapshot
                stays published.

        """
        with self._rebuild_lock:
            generation = self._index.generation + 1
            try:
                index = build_index(self._store.list_all(), generation=generation)
            except IndexRebuildFailure:
                logger.error(
                    "Index rebuild %d failed, keeping generation %d",
                    generation,
                    self._index.generation,
                )
                raise
            except Exception as e:
                logger.error("Index rebuild %d failed: %s", generation, e)
                raise IndexRebuildFailure(f"Index rebuild failed: {e}") from e

            self._index = index
            return index

    def add(self, entries: Iterable[Entry]) -> KnowledgeIndex:
        """Insert or replace a batch of entries, then rebuild once."""
        count = 0
        for entry in entries:
            self._store.put(entry)
            count += 1
        logger.debug("Stored %d entries", count)
        return self.rebuild()

    def remove(self, entry_ids: Iterable[str]) -> list[str]:
        """Delete a batch of entries, then rebuild once.

        Returns:
            Ids that were actually removed.

        """
        removed = [eid for eid in entry_ids if self._store.delete(eid)]
        logger.debug("Removed %d entries", len(removed))
        self.rebuild()
        return removed

    def _ingest(self, result: ExtractionResult) -> IngestReport:
        index = self.add(result.entries)
        for warning in result.warnings:
            logger.debug("Parse warning: %s", warning)
        return IngestReport(
            entries=tuple(result.entries),
            warnings=tuple(result.warnings),
            generation=index.generation,
        )

    def ingest_text(self, raw_text: str, source_ref: str) -> IngestReport:
        """Parse a raw document and insert its entries."""
        return self._ingest(extract(raw_text, source_ref, config=self._config.parser))

    def ingest_path(self, path: Path, *, pattern: str = DEFAULT_DOCUMENT_PATTERN) -> IngestReport:
        """Parse a document file, or every matching document in a directory.

        Raises:
            ParserError: If path is a directory that cannot be walked or
                does not exist.

        """
        if path.is_file():
            result = extract_file(path, config=self._config.parser)
        else:
            result = extract_directory(path, pattern=pattern, config=self._config.parser)
        return self._ingest(result)

    def _entries_to_verify(self, ids: Iterable[str] | None) -> list[Entry]:
        index = self._index
        if ids is None:
            return [entry for entry in index.all_entries() if entry.has_code]

        entries: list[Entry] = []
        for entry_id in ids:
            entry = index.lookup_by_id(entry_id)
            if entry is None:
                logger.warning("Entry not found for verification: %s, skipping", entry_id)
                continue
            entries.append(entry)
        return entries

    async def averify(
        self,
        runner: SandboxRunner,
        ids: Iterable[str] | None = None,
        *,
        max_concurrency: int | None = None,
    ) -> list[VerificationOutcome]:
        """Run entries through the sandbox and compare with expected output.

        Args:
            runner: Sandbox runner to execute snippets with.
            ids: Entry ids to verify; all entries with code if None.
            max_concurrency: Concurrent run bound (runner default if None).

        Returns:
            One outcome per verified entry, in request order.

        """
        from snippet_kb.sandbox.models import matches

        entries = self._entries_to_verify(ids)
        results = await runner.arun_batch(entries, max_concurrency=max_concurrency)
        outcomes = [
            VerificationOutcome(entry=entry, result=result, matched=matches(result, entry))
            for entry, result in zip(entries, results, strict=True)
        ]
        failed = sum(1 for o in outcomes if not o.passed)
        logger.info("Verified %d entries, %d failed", len(outcomes), failed)
        return outcomes

    def verify(
        self,
        runner: SandboxRunner,
        ids: Iterable[str] | None = None,
        *,
        max_concurrency: int | None = None,
    ) -> list[VerificationOutcome]:
        """Synchronous wrapper around averify()."""
        from snippet_kb.core.async_utils import run_sync

        return run_sync(self.averify(runner, ids, max_concurrency=max_concurrency))
