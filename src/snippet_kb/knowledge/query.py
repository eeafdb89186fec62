"""Structured queries over the knowledge index.

Every query reads exactly one index snapshot, taken from the index source
at call time, so a concurrent rebuild can never produce a mixed result.

Usage:
    from snippet_kb.knowledge.query import QueryEngine

    engine = QueryEngine(lambda: index)
    result = engine.by_tag("closures", limit=5)
    picks = engine.sample(3, seed=42, difficulty="basic")
"""

import logging
import random
from collections.abc import Callable

from snippet_kb.knowledge.index import KnowledgeIndex
from snippet_kb.knowledge.models import Difficulty, Entry, Query, QueryResult, normalize_tag
from snippet_kb.knowledge.seen import SeenSetProvider

logger = logging.getLogger(__name__)

IndexSource = Callable[[], KnowledgeIndex]


def _check_count(name: str, value: int | None) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def _truncate(entries: list[Entry], limit: int | None) -> tuple[Entry, ...]:
    if limit is None:
        return tuple(entries)
    return tuple(entries[:limit])


class QueryEngine:
    """Answers by_tag, search, sample and unseen_for queries.

    Args:
        index_source: Zero-argument callable returning the current index
            snapshot.
        seen_provider: Optional seen-set provider for unseen_for(). Without
            one, every learner is treated as having seen nothing.

    """

    def __init__(
        self,
        index_source: IndexSource,
        seen_provider: SeenSetProvider | None = None,
    ) -> None:
        self._index_source = index_source
        self._seen_provider = seen_provider

    def by_tag(self, tag: str, limit: int | None = None) -> QueryResult:
        """Entries carrying tag, in ingestion order, truncated to limit."""
        _check_count("limit", limit)
        index = self._index_source()
        entries = index.entries_for(index.lookup_by_tag(tag))
        return QueryResult(
            Query.of("by_tag", tag=normalize_tag(tag), limit=limit),
            _truncate(entries, limit),
        )

    def by_topic(self, topic: str, limit: int | None = None) -> QueryResult:
        """Entries in topic, in ingestion order, truncated to limit."""
        _check_count("limit", limit)
        index = self._index_source()
        entries = index.entries_for(index.lookup_by_topic(topic))
        return QueryResult(
            Query.of("by_topic", topic=topic.strip().lower(), limit=limit),
            _truncate(entries, limit),
        )

    def by_difficulty(self, difficulty: Difficulty | str, limit: int | None = None) -> QueryResult:
        """Entries at a difficulty level, in ingestion order."""
        _check_count("limit", limit)
        level = Difficulty.parse(difficulty)
        index = self._index_source()
        entries = index.entries_for(index.lookup_by_difficulty(level))
        return QueryResult(
            Query.of("by_difficulty", difficulty=level.value, limit=limit),
            _truncate(entries, limit),
        )

    def search(self, text: str, limit: int | None = None) -> QueryResult:
        """Case-insensitive term search over title and body.

        Each whitespace-separated term is matched as a substring. Entries
        are ranked by the number of distinct terms they contain; ties keep
        ingestion order. No terms or no matches gives an empty result.

        """
        _check_count("limit", limit)
        query = Query.of("search", text=text, limit=limit)
        terms = list(dict.fromkeys(term.lower() for term in text.split()))
        if not terms:
            return QueryResult(query)

        index = self._index_source()
        scored: list[tuple[int, int, Entry]] = []
        for position, entry in enumerate(index.all_entries()):
            haystack = f"{entry.title}\n{entry.body}".lower()
            score = sum(1 for term in terms if term in haystack)
            if score:
                scored.append((-score, position, entry))

        scored.sort(key=lambda item: (item[0], item[1]))
        logger.debug("search %r matched %d entries", text, len(scored))
        return QueryResult(query, _truncate([entry for _, _, entry in scored], limit))

    def sample(
        self,
        n: int,
        *,
        seed: int | str,
        difficulty: Difficulty | str | None = None,
    ) -> QueryResult:
        """Draw up to n entries with a caller-supplied seed.

        The draw uses a private random.Random(seed), so the same seed over
        the same entry set always yields the same selection.

        """
        _check_count("n", n)
        level = Difficulty.parse(difficulty) if difficulty is not None else None
        index = self._index_source()
        if level is None:
            candidates = index.all_entries()
        else:
            candidates = index.entries_for(index.lookup_by_difficulty(level))

        rng = random.Random(seed)
        picked = rng.sample(candidates, min(n, len(candidates)))
        return QueryResult(
            Query.of(
                "sample",
                n=n,
                seed=seed,
                difficulty=level.value if level is not None else None,
            ),
            tuple(picked),
        )

    def unseen_for(self, learner_id: str, n: int) -> QueryResult:
        """First n entries, in ingestion order, the learner has not seen."""
        _check_count("n", n)
        seen = self._seen_provider.seen_ids(learner_id) if self._seen_provider else frozenset()
        index = self._index_source()

        unseen: list[Entry] = []
        for entry in index.all_entries():
            if len(unseen) >= n:
                break
            if entry.id not in seen:
                unseen.append(entry)

        return QueryResult(Query.of("unseen_for", learner_id=learner_id, n=n), tuple(unseen))
