"""Document parsing for the snippet knowledge base.

This module turns raw note documents into validated Entry records.
Parsing is tolerant: problems inside a document become ParseWarning
objects collected next to the results, never exceptions.

Document format:

    ---
    topic: scope
    tags: [javascript]
    difficulty: basic
    ---

    ## Closures
    tags: closures, functions
    difficulty: intermediate

    An inner function keeps access to its outer variables.

    ```js
    function f() { let c = 0; return () => ++c; }
    const g = f();
    console.log(g());
    ```

    ```output
    1
    ```

Section metadata is the first paragraph under a heading, and only when
every line of it is a `key: value` line; otherwise it is body text.

Usage:
    from snippet_kb.knowledge.parser import extract

    entries, warnings = extract(text, "notes/closures.md")
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

import yaml

from snippet_kb.core.config import ParserConfig
from snippet_kb.core.exceptions import MalformedEntry, ParserError
from snippet_kb.knowledge.models import Entry, ParseWarning, normalize_tags, validate_entry

logger = logging.getLogger(__name__)

# ATX heading: up to 3 spaces, 1-6 hashes, optional title, optional closing hashes
HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")

# Fence opener: ``` or ~~~ (3+), optional info string
FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})[ \t]*([^\s`]*)")

# Section metadata line; only the block directly under a heading counts
META_RE = re.compile(r"^(id|tags|difficulty|topic)[ \t]*:[ \t]*(.*?)[ \t]*$", re.IGNORECASE)

FRONT_MATTER_KEYS = frozenset({"topic", "tags", "difficulty"})

DEFAULT_DOCUMENT_PATTERN = "**/*.md"


class ExtractionResult(NamedTuple):
    """Entries and warnings extracted from one or more documents."""

    entries: list[Entry]
    warnings: list[ParseWarning]


@dataclass
class _Section:
    title: str
    line: int
    meta: dict[str, str] = field(default_factory=dict)
    prose: list[str] = field(default_factory=list)
    code_blocks: list[str] = field(default_factory=list)
    output_lines: list[str] | None = None
    meta_open: bool = True
    meta_lines: list[tuple[str, str, str]] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)

    def close_meta(self, *, as_prose: bool = False) -> None:
        """End the metadata block, committing it or demoting it to body text."""
        if as_prose:
            self.prose.extend(raw for _, _, raw in self.meta_lines)
        else:
            for key, value, _ in self.meta_lines:
                self.meta[key] = value
        self.meta_lines = []
        self.meta_open = False


def _parse_front_matter(
    lines: list[str],
    source_ref: str,
    warnings: list[ParseWarning],
) -> tuple[dict[str, Any], int]:
    """Parse optional YAML front matter at the top of a document.

    Returns:
        Tuple of (front matter mapping, index of the first body line).

    """
    if not lines or lines[0].strip() != "---":
        return {}, 0

    for end in range(1, len(lines)):
        if lines[end].strip() in ("---", "..."):
            break
    else:
        warnings.append(ParseWarning(source_ref, 1, "", "Front matter has no closing '---'"))
        return {}, 0

    raw = "\n".join(lines[1:end])
    try:
        data = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as e:
        warnings.append(ParseWarning(source_ref, 1, "", f"Invalid YAML front matter: {e}"))
        return {}, end + 1

    if data is None:
        data = {}
    if not isinstance(data, dict):
        warnings.append(
            ParseWarning(source_ref, 1, "", "Front matter is not a mapping, ignoring")
        )
        return {}, end + 1

    unknown = sorted(str(k) for k in data if k not in FRONT_MATTER_KEYS)
    if unknown:
        logger.debug("%s: ignoring unknown front matter keys %s", source_ref, unknown)
    return {k: v for k, v in data.items() if k in FRONT_MATTER_KEYS}, end + 1


def _is_closing_fence(line: str, marker: str) -> bool:
    stripped = line.strip()
    return (
        len(stripped) >= len(marker)
        and stripped[0] == marker[0]
        and set(stripped) == {marker[0]}
        and len(line) - len(line.lstrip(" ")) <= 3
    )


def _split_sections(
    lines: list[str],
    start: int,
    config: ParserConfig,
) -> list[_Section]:
    """Group document lines into sections, honouring fenced regions."""
    # Preamble before the first heading has no title and is dropped later
    current = _Section(title="", line=start + 1)
    sections = [current]

    fence_marker: str | None = None
    fence_lang = ""
    fence_open_line = ""
    fence_buffer: list[str] = []

    def close_fence(closing_line: str | None) -> None:
        if fence_lang in config.code_languages:
            current.code_blocks.append("\n".join(fence_buffer))
        elif fence_lang in config.output_languages:
            if current.output_lines is None:
                current.output_lines = []
            current.output_lines.extend(fence_buffer)
        else:
            current.prose.append(fence_open_line)
            current.prose.extend(fence_buffer)
            if closing_line is not None:
                current.prose.append(closing_line)

    for line_no, line in enumerate(lines[start:], start=start + 1):
        if fence_marker is not None:
            if _is_closing_fence(line, fence_marker):
                close_fence(line)
                fence_marker = None
            else:
                fence_buffer.append(line)
            continue

        heading = HEADING_RE.match(line)
        if heading:
            if current.meta_open:
                current.close_meta()
            current = _Section(title=(heading.group(2) or "").strip(), line=line_no)
            sections.append(current)
            continue

        fence = FENCE_RE.match(line)
        if fence:
            if current.meta_open:
                current.close_meta()
            fence_marker = fence.group(1)
            fence_lang = fence.group(2).lower()
            fence_open_line = line
            fence_buffer = []
            continue

        # Metadata is the first paragraph under the heading, and only when
        # every line of it is a key: value line
        if current.meta_open:
            meta = META_RE.match(line)
            if meta:
                current.meta_lines.append((meta.group(1).lower(), meta.group(2), line))
                continue
            current.close_meta(as_prose=bool(line.strip()))

        current.prose.append(line)

    if current.meta_open:
        current.close_meta()
    if fence_marker is not None:
        current.problems.append("Unterminated code fence, reading to end of document")
        close_fence(None)

    return sections


def _merge_tags(section_tags: str | None, default_tags: Any) -> tuple[str, ...]:
    """Combine section tags with document default tags, section tags first."""
    if not isinstance(default_tags, (str, list, tuple)):
        default_tags = None
    return normalize_tags((*normalize_tags(section_tags), *normalize_tags(default_tags)))


def extract(
    raw_text: str,
    source_ref: str,
    *,
    config: ParserConfig | None = None,
) -> ExtractionResult:
    """Extract entries from one raw document.

    Args:
        raw_text: Document text.
        source_ref: Provenance pointer stored on every entry.
        config: Parser configuration (defaults if None).

    Returns:
        ExtractionResult with entries in source order and any warnings.

    """
    config = config or ParserConfig()
    warnings: list[ParseWarning] = []
    entries: list[Entry] = []

    lines = raw_text.splitlines()
    front_matter, body_start = _parse_front_matter(lines, source_ref, warnings)
    sections = _split_sections(lines, body_start, config)

    seen_ids: set[str] = set()
    ordinal = 0
    for section in sections:
        if not section.title:
            if section.code_blocks or any(line.strip() for line in section.prose):
                logger.debug(
                    "%s:%d: skipping untitled content", source_ref, section.line
                )
            continue

        ordinal += 1
        for problem in section.problems:
            warnings.append(ParseWarning(source_ref, section.line, section.title, problem))

        raw_fields: dict[str, Any] = {
            "id": section.meta.get("id") or f"{source_ref}#{ordinal}",
            "title": section.title,
            "tags": _merge_tags(section.meta.get("tags"), front_matter.get("tags")),
            "body": "\n".join(section.prose),
            "code": "\n".join(section.code_blocks) if section.code_blocks else None,
            "expected_output": section.output_lines,
            "difficulty": section.meta.get("difficulty") or front_matter.get("difficulty"),
            "source_ref": source_ref,
            "topic": section.meta.get("topic") or front_matter.get("topic"),
        }

        try:
            entry = validate_entry(raw_fields, default_difficulty=config.default_difficulty)
        except MalformedEntry as e:
            logger.warning(
                "%s:%d: skipping section '%s': %s", source_ref, section.line, section.title, e
            )
            warnings.append(ParseWarning(source_ref, section.line, section.title, str(e)))
            continue

        if entry.id in seen_ids:
            message = f"Duplicate entry id '{entry.id}' in document, skipping"
            logger.warning("%s:%d: %s", source_ref, section.line, message)
            warnings.append(ParseWarning(source_ref, section.line, section.title, message))
            continue

        seen_ids.add(entry.id)
        entries.append(entry)

    logger.debug(
        "Extracted %d entries (%d warnings) from %s", len(entries), len(warnings), source_ref
    )
    return ExtractionResult(entries, warnings)


def extract_file(
    path: Path,
    *,
    source_ref: str | None = None,
    config: ParserConfig | None = None,
) -> ExtractionResult:
    """Read a UTF-8 document from disk and extract its entries.

    Unreadable files produce a single warning instead of an exception.

    Args:
        path: Document path.
        source_ref: Provenance pointer; defaults to the POSIX form of path.
        config: Parser configuration.

    Returns:
        ExtractionResult for the file.

    """
    ref = source_ref if source_ref is not None else path.as_posix()
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read document %s: %s", path, e)
        return ExtractionResult([], [ParseWarning(ref, 0, "", f"Cannot read document: {e}")])
    return extract(content, ref, config=config)


def extract_directory(
    root: Path,
    *,
    pattern: str = DEFAULT_DOCUMENT_PATTERN,
    config: ParserConfig | None = None,
) -> ExtractionResult:
    """Extract entries from every matching document below root.

    Files are processed in sorted path order so ingestion order is stable.
    Each entry's source_ref is its path relative to root.

    Raises:
        ParserError: If root does not exist or is not a directory.

    """
    if not root.is_dir():
        raise ParserError(f"Document directory not found: {root}")

    entries: list[Entry] = []
    warnings: list[ParseWarning] = []
    for path in sorted(p for p in root.glob(pattern) if p.is_file()):
        result = extract_file(path, source_ref=path.relative_to(root).as_posix(), config=config)
        entries.extend(result.entries)
        warnings.extend(result.warnings)

    logger.debug("Extracted %d entries from directory %s", len(entries), root)
    return ExtractionResult(entries, warnings)
