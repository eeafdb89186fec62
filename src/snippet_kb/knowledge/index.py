"""Inverted index over knowledge entries.

This module builds immutable KnowledgeIndex snapshots. A snapshot is a
pure function of the entries it was built from; rebuilding produces a new
snapshot and never mutates an old one, so readers holding a reference
always see a complete index.

Usage:
    from snippet_kb.knowledge.index import build_index

    index = build_index(entries)
    ids = index.lookup_by_tag("closures")
    entry = index.lookup_by_id(ids[0])
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from snippet_kb.core.exceptions import IndexRebuildFailure
from snippet_kb.knowledge.models import Difficulty, Entry, normalize_tag

logger = logging.getLogger(__name__)

_EMPTY: tuple[str, ...] = ()


@dataclass(frozen=True)
class KnowledgeIndex:
    """Immutable index snapshot.

    Attributes:
        entries: Mapping from entry id to Entry (primary map).
        order: Entry ids in ingestion order.
        by_tag: Tag to ordered entry ids.
        by_topic: Topic to ordered entry ids.
        by_difficulty: Difficulty to ordered entry ids.
        generation: Monotonic rebuild counter assigned by the owner.
        built_at: Timestamp when the snapshot was built.

    """

    entries: MappingProxyType[str, Entry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    order: tuple[str, ...] = ()
    by_tag: MappingProxyType[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    by_topic: MappingProxyType[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    by_difficulty: MappingProxyType[Difficulty, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    generation: int = 0
    built_at: datetime = field(default_factory=datetime.now)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self.entries

    def lookup_by_id(self, entry_id: str) -> Entry | None:
        """Get an entry by id.

        Returns:
            Entry if present, None otherwise.

        """
        return self.entries.get(entry_id)

    def position(self, entry_id: str) -> int | None:
        """Get the 0-based ingestion position of an entry, or None if absent."""
        if entry_id not in self.entries:
            return None
        return self.order.index(entry_id)

    def lookup_by_tag(self, tag: str) -> tuple[str, ...]:
        """Get ids of entries carrying tag, in ingestion order.

        The tag is normalized first. Unknown tags return an empty tuple.
        """
        return self.by_tag.get(normalize_tag(tag), _EMPTY)

    def lookup_by_topic(self, topic: str) -> tuple[str, ...]:
        """Get ids of entries in topic, in ingestion order."""
        return self.by_topic.get(topic.strip().lower(), _EMPTY)

    def lookup_by_difficulty(self, difficulty: Difficulty | str) -> tuple[str, ...]:
        """Get ids of entries at a difficulty level, in ingestion order."""
        return self.by_difficulty.get(Difficulty.parse(difficulty), _EMPTY)

    def entries_for(self, ids: Iterable[str]) -> list[Entry]:
        """Resolve ids to entries, preserving order and skipping unknown ids."""
        return [self.entries[eid] for eid in ids if eid in self.entries]

    def all_entries(self) -> list[Entry]:
        """All entries in ingestion order."""
        return [self.entries[eid] for eid in self.order]

    def tags(self) -> dict[str, int]:
        """Tag to entry count, in first-seen tag order."""
        return {tag: len(ids) for tag, ids in self.by_tag.items()}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "generation": self.generation,
            "built_at": self.built_at.isoformat(),
            "order": list(self.order),
            "entries": {eid: self.entries[eid].to_dict() for eid in self.order},
            "by_tag": {tag: list(ids) for tag, ids in self.by_tag.items()},
            "by_topic": {topic: list(ids) for topic, ids in self.by_topic.items()},
            "by_difficulty": {d.value: list(ids) for d, ids in self.by_difficulty.items()},
        }


def build_index(entries: Iterable[Entry], *, generation: int = 0) -> KnowledgeIndex:
    """Build a complete index snapshot from entries.

    Runs in O(N*T) for N entries with T tags on average. All buckets keep
    ingestion order.

    Args:
        entries: Entries in ingestion order.
        generation: Generation number stamped on the snapshot.

    Returns:
        New KnowledgeIndex.

    Raises:
        IndexRebuildFailure: If two entries share an id.

    """
    primary: dict[str, Entry] = {}
    order: list[str] = []
    tag_buckets: dict[str, list[str]] = {}
    topic_buckets: dict[str, list[str]] = {}
    difficulty_buckets: dict[Difficulty, list[str]] = {}

    for entry in entries:
        if entry.id in primary:
            raise IndexRebuildFailure(f"Duplicate entry id in index build: {entry.id}")
        primary[entry.id] = entry
        order.append(entry.id)

        for tag in entry.tags:
            tag_buckets.setdefault(tag, []).append(entry.id)
        if entry.topic:
            topic_buckets.setdefault(entry.topic, []).append(entry.id)
        difficulty_buckets.setdefault(entry.difficulty, []).append(entry.id)

    index = KnowledgeIndex(
        entries=MappingProxyType(primary),
        order=tuple(order),
        by_tag=MappingProxyType({k: tuple(v) for k, v in tag_buckets.items()}),
        by_topic=MappingProxyType({k: tuple(v) for k, v in topic_buckets.items()}),
        by_difficulty=MappingProxyType({k: tuple(v) for k, v in difficulty_buckets.items()}),
        generation=generation,
        built_at=datetime.now(),
    )
    logger.debug(
        "Built index generation %d: %d entries, %d tags",
        generation,
        len(order),
        len(tag_buckets),
    )
    return index
