"""Data models for the snippet knowledge base.

This module provides the immutable Entry record, its validation contract,
and the small value types produced by parsing and querying.

Usage:
    from snippet_kb.knowledge.models import validate_entry

    entry = validate_entry({
        "id": "notes/closures.md#1",
        "title": "Closures",
        "tags": "Closures, scope",
        "code": "console.log(1)",
        "expected_output": ["1"],
        "source_ref": "notes/closures.md",
    })
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from snippet_kb.core.exceptions import MalformedEntry


class Difficulty(str, Enum):
    """Entry difficulty levels."""

    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value: "Difficulty | str") -> "Difficulty":
        """Parse a difficulty from its (case-insensitive) name.

        Raises:
            MalformedEntry: If the value is not a known difficulty.

        """
        if isinstance(value, Difficulty):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(d.value for d in cls)
            raise MalformedEntry(
                f"Invalid difficulty '{value}'. Valid options: {valid}",
                field="difficulty",
            ) from None


def normalize_tag(tag: str) -> str:
    """Return the canonical form of a tag (trimmed, lowercase)."""
    return tag.strip().lower()


def normalize_tags(tags: str | Iterable[str] | None) -> tuple[str, ...]:
    """Normalize tags to canonical, deduplicated form.

    Accepts a comma-separated string or an iterable of strings. Empty
    tags are dropped and first-seen order is kept so results are
    deterministic.

    Args:
        tags: Raw tags.

    Returns:
        Tuple of canonical tags (may be empty).

    """
    if tags is None:
        return ()
    if isinstance(tags, str):
        raw: Iterable[str] = tags.split(",")
    else:
        raw = tags

    seen: dict[str, None] = {}
    for tag in raw:
        canonical = normalize_tag(str(tag))
        if canonical:
            seen.setdefault(canonical, None)
    return tuple(seen)


def _normalize_output(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return tuple(value.splitlines())
    if isinstance(value, Iterable):
        return tuple(str(line) for line in value)
    raise MalformedEntry(
        f"expected_output must be a string or list of strings, got {type(value).__name__}",
        field="expected_output",
    )


@dataclass(frozen=True)
class Entry:
    """One immutable unit of knowledge.

    Attributes:
        id: Stable unique identifier.
        title: Short human label.
        tags: Canonical topic labels (never empty).
        body: Free-text explanation.
        code: Optional executable JavaScript snippet.
        expected_output: Optional expected printed lines (requires code).
        difficulty: Difficulty level.
        source_ref: Provenance pointer (not interpreted).
        topic: Optional coarse grouping label.

    """

    id: str
    title: str
    tags: tuple[str, ...]
    body: str = ""
    code: str | None = None
    expected_output: tuple[str, ...] | None = None
    difficulty: Difficulty = Difficulty.BASIC
    source_ref: str = ""
    topic: str | None = None

    def __post_init__(self) -> None:
        """Enforce Entry invariants."""
        if not self.id or not self.id.strip():
            raise MalformedEntry("Entry id cannot be empty", field="id")
        if not self.title or not self.title.strip():
            raise MalformedEntry("Entry title cannot be empty", field="title")
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        if not self.tags:
            raise MalformedEntry(f"Entry '{self.id}' must have at least one tag", field="tags")
        if self.expected_output is not None and self.code is None:
            raise MalformedEntry(
                f"Entry '{self.id}' declares expected_output without code",
                field="expected_output",
            )

    @property
    def has_code(self) -> bool:
        """Whether this entry carries an executable snippet."""
        return self.code is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Returns:
            Dictionary representation suitable for YAML/JSON serialization.

        """
        return {
            "id": self.id,
            "title": self.title,
            "tags": list(self.tags),
            "body": self.body,
            "code": self.code,
            "expected_output": (
                list(self.expected_output) if self.expected_output is not None else None
            ),
            "difficulty": self.difficulty.value,
            "source_ref": self.source_ref,
            "topic": self.topic,
        }


def validate_entry(
    raw_fields: Mapping[str, Any],
    *,
    default_difficulty: Difficulty | str = Difficulty.BASIC,
) -> Entry:
    """Validate raw fields and build an Entry.

    Args:
        raw_fields: Mapping with keys id, title, tags, body, code,
            expected_output, difficulty, source_ref and topic.
        default_difficulty: Used when raw_fields has no difficulty.

    Returns:
        Validated, normalized Entry.

    Raises:
        MalformedEntry: If required fields are missing or invariants fail.

    """
    title = str(raw_fields.get("title") or "").strip()
    if not title:
        raise MalformedEntry("Entry is missing a title", field="title")

    entry_id = str(raw_fields.get("id") or "").strip()
    if not entry_id:
        raise MalformedEntry(f"Entry '{title}' is missing an id", field="id")

    tags = normalize_tags(raw_fields.get("tags"))
    if not tags:
        raise MalformedEntry(f"Entry '{title}' has no tags", field="tags")

    source_ref = str(raw_fields.get("source_ref") or "").strip()
    if not source_ref:
        raise MalformedEntry(f"Entry '{title}' is missing a source_ref", field="source_ref")

    code = raw_fields.get("code")
    if code is not None:
        code = str(code)
        if not code.strip():
            code = None

    expected_output = _normalize_output(raw_fields.get("expected_output"))
    if expected_output is not None and code is None:
        raise MalformedEntry(
            f"Entry '{title}' declares expected output but has no code",
            field="expected_output",
        )

    raw_difficulty = raw_fields.get("difficulty") or default_difficulty
    difficulty = Difficulty.parse(raw_difficulty)

    topic = raw_fields.get("topic")
    topic = str(topic).strip().lower() if topic is not None and str(topic).strip() else None

    return Entry(
        id=entry_id,
        title=title,
        tags=tags,
        body=str(raw_fields.get("body") or "").strip(),
        code=code,
        expected_output=expected_output,
        difficulty=difficulty,
        source_ref=source_ref,
        topic=topic,
    )


@dataclass(frozen=True)
class ParseWarning:
    """A non-fatal problem found while extracting entries.

    Attributes:
        source_ref: Document the warning refers to.
        line: 1-based line number of the offending section (0 for document level).
        title: Section title, empty when unknown.
        message: Human-readable description.

    """

    source_ref: str
    line: int
    title: str
    message: str

    def __str__(self) -> str:
        location = f"{self.source_ref}:{self.line}" if self.line else self.source_ref
        if self.title:
            return f"{location} [{self.title}] {self.message}"
        return f"{location} {self.message}"


@dataclass(frozen=True)
class Query:
    """Description of a query, kept with its result for traceability.

    Attributes:
        kind: Query operation name (by_tag, search, sample, unseen_for, ...).
        params: Parameters the query was called with.

    """

    kind: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, kind: str, **params: Any) -> "Query":
        """Build a query with keyword parameters in a stable order."""
        return cls(kind=kind, params=tuple(sorted(params.items())))

    def param(self, name: str, default: Any = None) -> Any:
        """Get a parameter value by name."""
        return dict(self.params).get(name, default)


@dataclass(frozen=True)
class QueryResult:
    """Matched entries plus the query that produced them."""

    query: Query
    entries: tuple[Entry, ...] = field(default_factory=tuple)

    @property
    def ids(self) -> tuple[str, ...]:
        """Ids of the matched entries, in result order."""
        return tuple(entry.id for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)
