"""Seen-set providers for learner progress.

A seen-set provider maps a learner id to the set of entry ids that
learner has already reviewed. The query engine consumes it through the
SeenSetProvider interface.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from threading import Lock


class SeenSetProvider(ABC):
    """Interface for looking up which entries a learner has seen."""

    @abstractmethod
    def seen_ids(self, learner_id: str) -> frozenset[str]:
        """Return ids the learner has seen (empty for unknown learners)."""
        ...


class InMemorySeenSetProvider(SeenSetProvider):
    """Thread-safe in-memory seen-set provider."""

    def __init__(self) -> None:
        self._seen: dict[str, set[str]] = {}
        self._lock = Lock()

    def seen_ids(self, learner_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._seen.get(learner_id, ()))

    def mark_seen(self, learner_id: str, entry_ids: Iterable[str]) -> None:
        """Record entry ids as seen by a learner."""
        with self._lock:
            self._seen.setdefault(learner_id, set()).update(entry_ids)

    def reset(self, learner_id: str) -> None:
        """Forget everything a learner has seen."""
        with self._lock:
            self._seen.pop(learner_id, None)
