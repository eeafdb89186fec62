"""Entry storage boundary.

The index and query layers depend on the EntryStore interface only.
InMemoryEntryStore is the reference implementation; other backends
(files, databases) implement the same four operations.

Usage:
    from snippet_kb.knowledge.store import InMemoryEntryStore

    store = InMemoryEntryStore()
    store.put(entry)
    store.get(entry.id)
"""

import logging
from abc import ABC, abstractmethod
from threading import Lock

from snippet_kb.knowledge.models import Entry

logger = logging.getLogger(__name__)


class EntryStore(ABC):
    """Abstract persistence boundary for entries.

    Implementations must return entries from list_all() in ingestion
    order. Putting an entry whose id already exists replaces it: the old
    version is deleted and the new one is appended as the latest insert.

    """

    @abstractmethod
    def get(self, entry_id: str) -> Entry | None:
        """Return the entry with entry_id, or None if absent."""
        ...

    @abstractmethod
    def put(self, entry: Entry) -> None:
        """Insert or replace an entry."""
        ...

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        """Delete an entry.

        Returns:
            True if an entry was removed, False if the id was unknown.

        """
        ...

    @abstractmethod
    def list_all(self) -> list[Entry]:
        """Return all entries in ingestion order."""
        ...

    def __len__(self) -> int:
        return len(self.list_all())


class InMemoryEntryStore(EntryStore):
    """Thread-safe in-memory entry store."""

    def __init__(self) -> None:
        self._entries: dict[str, Entry] = {}
        self._lock = Lock()

    def get(self, entry_id: str) -> Entry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def put(self, entry: Entry) -> None:
        with self._lock:
            if self._entries.pop(entry.id, None) is not None:
                logger.debug("Replacing entry %s", entry.id)
            self._entries[entry.id] = entry

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def list_all(self) -> list[Entry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
