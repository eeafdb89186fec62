"""Tests for the KnowledgeBase facade."""

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from snippet_kb.core.config import SandboxConfig, load_config
from snippet_kb.core.exceptions import IndexRebuildFailure, ParserError
from snippet_kb.knowledge.engine import KnowledgeBase, VerificationOutcome
from snippet_kb.knowledge.models import Difficulty, Entry
from snippet_kb.knowledge.seen import InMemorySeenSetProvider
from snippet_kb.knowledge.store import InMemoryEntryStore
from snippet_kb.sandbox.models import ExecutionError, ExecutionResult, RunState, matches
from snippet_kb.sandbox.runner import SandboxRunner


class TestIngestion:
    """Tests for ingest_text and ingest_path."""

    def test_ingest_text_publishes_index(self, closures_document: str) -> None:
        """Test ingested entries are queryable by tag."""
        kb = KnowledgeBase()
        report = kb.ingest_text(closures_document, "scope.md")

        assert report.ok
        assert [e.title for e in report.entries] == ["Closures", "Hoisting"]
        assert report.generation == kb.index.generation

        closures = kb.query.by_tag("closures")
        assert closures.ids == ("scope.md#1",)
        assert closures.entries[0].code is not None
        assert closures.entries[0].expected_output == ("1", "2")

    def test_ingest_reports_warnings(self, mixed_document: str) -> None:
        """Test parse warnings are returned and valid entries still land."""
        kb = KnowledgeBase()
        report = kb.ingest_text(mixed_document, "async.md")

        assert not report.ok
        assert len(report.warnings) == 1
        assert kb.lookup_by_id("event-loop") is not None
        assert len(kb.index) == 2

    def test_ingest_directory(self, notes_dir: Path) -> None:
        """Test every document below a directory is ingested."""
        kb = KnowledgeBase()
        report = kb.ingest_path(notes_dir)

        assert len(report.entries) == 4
        assert kb.index.order[0] == "event-loop"

    def test_ingest_single_file(self, notes_dir: Path) -> None:
        """Test a file path is ingested directly."""
        kb = KnowledgeBase()
        report = kb.ingest_path(notes_dir / "scope.md")
        assert len(report.entries) == 2

    def test_ingest_missing_directory(self, tmp_path: Path) -> None:
        """Test a missing path raises ParserError."""
        with pytest.raises(ParserError):
            KnowledgeBase().ingest_path(tmp_path / "missing")

    def test_parser_config_is_used(self) -> None:
        """Test the knowledge base passes its parser config to extraction."""
        config = load_config({"parser": {"default_difficulty": "advanced"}})
        kb = KnowledgeBase(config=config)
        kb.ingest_text("# A\ntags: t\n", "doc.md")
        assert kb.lookup_by_id("doc.md#1").difficulty is Difficulty.ADVANCED


class TestMutation:
    """Tests for add, remove and rebuild."""

    def test_generation_increments(self, entry_factory) -> None:
        """Test every rebuild publishes a new generation."""
        kb = KnowledgeBase()
        start = kb.index.generation

        kb.add([entry_factory("a")])
        kb.add([entry_factory("b")])
        assert kb.index.generation == start + 2

    def test_delete_then_rebuild_removes_from_queries(self, closures_document: str) -> None:
        """Test a removed entry disappears from tag results."""
        kb = KnowledgeBase()
        kb.ingest_text(closures_document, "scope.md")
        assert kb.query.by_tag("javascript").ids == ("scope.md#1", "scope.md#2")

        removed = kb.remove(["scope.md#1", "unknown"])

        assert removed == ["scope.md#1"]
        assert kb.query.by_tag("closures").ids == ()
        assert kb.query.by_tag("javascript").ids == ("scope.md#2",)
        assert kb.lookup_by_id("scope.md#1") is None

    def test_replace_entry(self, entry_factory) -> None:
        """Test adding an existing id replaces it and moves it to the end."""
        kb = KnowledgeBase()
        kb.add([entry_factory("a", tags="x"), entry_factory("b", tags="x")])
        kb.add([entry_factory("a", tags="x, y")])

        assert kb.query.by_tag("x").ids == ("b", "a")
        assert kb.query.by_tag("y").ids == ("a",)

    def test_directly_built_entries_found_by_tag(self) -> None:
        """Test entries built without validate_entry are indexed under canonical tags."""
        kb = KnowledgeBase()
        kb.add([Entry(id="a", title="A", tags=("Closures", " closures "))])

        assert kb.lookup_by_id("a").tags == ("closures",)
        assert kb.query.by_tag("closures").ids == ("a",)
        assert kb.query.by_tag("Closures").ids == ("a",)

    def test_existing_store_is_indexed(self, entry_factory) -> None:
        """Test entries already in the store are indexed on construction."""
        store = InMemoryEntryStore()
        store.put(entry_factory("pre"))
        kb = KnowledgeBase(store=store)
        assert kb.lookup_by_id("pre") is not None
        assert kb.store is store

    def test_failed_rebuild_keeps_previous_snapshot(self, entry_factory) -> None:
        """Test readers keep the last good index when a rebuild fails."""
        kb = KnowledgeBase()
        kb.add([entry_factory("a", tags="x")])
        before = kb.index

        with patch(
            "snippet_kb.knowledge.engine.build_index",
            side_effect=RuntimeError("disk on fire"),
        ):
            with pytest.raises(IndexRebuildFailure, match="disk on fire"):
                kb.add([entry_factory("b", tags="x")])

        assert kb.index is before
        assert kb.query.by_tag("x").ids == ("a",)

        # The store kept the write, so the next rebuild picks it up
        kb.rebuild()
        assert kb.query.by_tag("x").ids == ("a", "b")

    def test_snapshot_held_by_reader_is_stable(self, entry_factory) -> None:
        """Test an index reference taken before a write never changes."""
        kb = KnowledgeBase()
        kb.add([entry_factory("a", tags="x")])
        snapshot = kb.index

        kb.add([entry_factory("b", tags="x")])
        assert snapshot.lookup_by_tag("x") == ("a",)
        assert kb.index.lookup_by_tag("x") == ("a", "b")

    def test_concurrent_rebuilds_publish_complete_indexes(self, entry_factory) -> None:
        """Test concurrent writers and readers never see a partial index."""
        kb = KnowledgeBase()
        errors: list[str] = []

        def writer(prefix: str) -> None:
            for i in range(20):
                kb.add([entry_factory(f"{prefix}-{i}", tags="shared")])

        def reader() -> None:
            for _ in range(200):
                index = kb.index
                if len(index.lookup_by_tag("shared")) != len(index):
                    errors.append("partial index observed")

        threads = [threading.Thread(target=writer, args=(p,)) for p in ("a", "b")]
        threads.append(threading.Thread(target=reader))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(kb.index) == 40


class TestQueriesThroughFacade:
    """Tests for unseen_for through the facade."""

    def test_unseen_for_uses_provider(self, closures_document: str) -> None:
        """Test the facade wires the seen-set provider into queries."""
        provider = InMemorySeenSetProvider()
        kb = KnowledgeBase(seen_provider=provider)
        kb.ingest_text(closures_document, "scope.md")
        provider.mark_seen("ana", ["scope.md#1"])

        assert kb.query.unseen_for("ana", 5).ids == ("scope.md#2",)


class _FakeRunner:
    """Runner double returning canned stdout per entry id."""

    def __init__(self, outputs: dict[str, tuple[str, ...]]) -> None:
        self.outputs = outputs
        self.calls: list[list[str]] = []

    async def arun_batch(self, entries, *, max_concurrency=None):
        self.calls.append([e.id for e in entries])
        return [
            ExecutionResult(stdout_lines=self.outputs.get(e.id, ()), entry_id=e.id)
            for e in entries
        ]


class TestVerify:
    """Tests for verify / averify."""

    def test_verify_all_entries_with_code(self, closures_document: str) -> None:
        """Test every entry with code is verified and compared."""
        kb = KnowledgeBase()
        kb.ingest_text(closures_document, "scope.md")
        runner = _FakeRunner({"scope.md#1": ("1", "2"), "scope.md#2": ("1",)})

        outcomes = kb.verify(runner)  # type: ignore[arg-type]

        assert runner.calls == [["scope.md#1", "scope.md#2"]]
        assert [(o.entry.id, o.matched) for o in outcomes] == [
            ("scope.md#1", True),
            ("scope.md#2", False),
        ]

    def test_verify_selected_ids_skips_unknown(self, closures_document: str) -> None:
        """Test an explicit id list is honoured and unknown ids are skipped."""
        kb = KnowledgeBase()
        kb.ingest_text(closures_document, "scope.md")
        runner = _FakeRunner({"scope.md#2": ("undefined",)})

        outcomes = kb.verify(runner, ["ghost", "scope.md#2"])  # type: ignore[arg-type]

        assert runner.calls == [["scope.md#2"]]
        assert outcomes[0].matched

    @pytest.mark.asyncio
    async def test_averify(self, closures_document: str) -> None:
        """Test the async variant from inside a running loop."""
        kb = KnowledgeBase()
        kb.ingest_text(closures_document, "scope.md")
        runner = _FakeRunner({})

        outcomes = await kb.averify(runner)  # type: ignore[arg-type]
        assert [o.matched for o in outcomes] == [False, False]


class TestVerificationOutcome:
    """Tests for the passed verdict on verification outcomes."""

    @staticmethod
    def _outcome(
        result: ExecutionResult, expected: tuple[str, ...] | None
    ) -> VerificationOutcome:
        entry = Entry(
            id="e", title="T", tags=("t",), code="console.log(1)", expected_output=expected
        )
        return VerificationOutcome(entry=entry, result=result, matched=matches(result, entry))

    def test_clean_run_passes(self) -> None:
        """Test a completed run with matching output passes."""
        assert self._outcome(ExecutionResult(stdout_lines=("1",)), ("1",)).passed

    def test_mismatch_fails(self) -> None:
        """Test different output fails."""
        assert not self._outcome(ExecutionResult(stdout_lines=("2",)), ("1",)).passed

    def test_error_without_expected_output_fails(self) -> None:
        """Test a throwing snippet with nothing declared is not a pass."""
        result = ExecutionResult(
            error=ExecutionError("ReferenceError", "x is not defined"), state=RunState.FAILED
        )
        outcome = self._outcome(result, None)

        assert outcome.matched
        assert not outcome.passed

    def test_declared_output_before_throw_passes(self) -> None:
        """Test a snippet that prints its declared output and then throws passes."""
        result = ExecutionResult(
            stdout_lines=("1",),
            error=ExecutionError("TypeError", "boom"),
            state=RunState.FAILED,
        )
        assert self._outcome(result, ("1",)).passed

    @pytest.mark.parametrize(
        "result",
        [
            ExecutionResult(
                stdout_lines=("1",),
                error=ExecutionError("TimeoutError", "Execution timed out after 100ms"),
                timed_out=True,
                state=RunState.TIMED_OUT,
            ),
            ExecutionResult(
                stdout_lines=("1",),
                error=ExecutionError("SandboxError", "Sandbox process exited with code 1"),
                state=RunState.FAILED,
            ),
        ],
    )
    def test_timeout_and_sandbox_errors_fail(self, result: ExecutionResult) -> None:
        """Test timeouts and sandbox failures never pass, even with matching output."""
        assert not self._outcome(result, ("1",)).passed

    def test_codeless_entry_fails(self, entry_factory) -> None:
        """Test verifying an entry without code is reported as a failure."""
        kb = KnowledgeBase()
        kb.add([entry_factory("prose")])
        runner = SandboxRunner(SandboxConfig(node_path="definitely-not-node-xyz"))

        outcomes = kb.verify(runner, ["prose"])

        assert outcomes[0].matched
        assert not outcomes[0].passed
        assert outcomes[0].result.error.name == "SandboxError"
