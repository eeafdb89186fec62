"""Pytest configuration and fixtures for snippet-kb tests."""

from pathlib import Path

import pytest

from snippet_kb.knowledge.models import Entry, validate_entry


def make_entry(entry_id: str, **overrides) -> Entry:
    """Build a valid entry with sensible defaults."""
    fields = {
        "id": entry_id,
        "title": entry_id.replace("-", " ").title(),
        "tags": "general",
        "source_ref": "tests",
    }
    fields.update(overrides)
    return validate_entry(fields)


@pytest.fixture
def closures_document() -> str:
    """Document with a closures entry and a hoisting entry."""
    return """---
topic: scope
tags: [javascript]
---

# Closures
tags: closures, functions
difficulty: intermediate

An inner function keeps access to variables of its outer function.

```js
function counter() {
  let c = 0;
  return () => ++c;
}
const next = counter();
console.log(next());
console.log(next());
```

```output
1
2
```

# Hoisting
tags: hoisting

Declarations with var are hoisted to the top of their scope.

```js
console.log(typeof x);
var x = 1;
```

```output
undefined
```
"""


@pytest.fixture
def mixed_document() -> str:
    """Document with one valid entry, one untagged entry and one prose-only entry."""
    return """Intro text before any heading is ignored.

## Event Loop
id: event-loop
tags: async, Event Loop
difficulty: advanced

Microtasks run before the next macrotask.

```javascript
setTimeout(() => console.log("timeout"), 0);
Promise.resolve().then(() => console.log("microtask"));
```

```expected
microtask
timeout
```

## Missing Tags

No tags here, so this section is rejected.

## Prose Only
tags: theory

Just an explanation, nothing to run.

```python
print("not javascript")
```
"""


@pytest.fixture
def sample_entries() -> list[Entry]:
    """Four entries across two tags and all difficulties."""
    return [
        make_entry(
            "closures",
            tags="closures, functions",
            body="A closure captures its lexical scope.",
            code="console.log(1)",
            expected_output=["1"],
            difficulty="intermediate",
            topic="scope",
        ),
        make_entry(
            "hoisting",
            tags="hoisting",
            body="var declarations are hoisted.",
            difficulty="basic",
            topic="scope",
        ),
        make_entry(
            "promises",
            tags="async, functions",
            body="Promises represent eventual values. A closure may resolve them.",
            difficulty="advanced",
        ),
        make_entry(
            "arrow-functions",
            tags="functions",
            body="Arrow functions bind this lexically.",
            difficulty="basic",
        ),
    ]


@pytest.fixture
def notes_dir(tmp_path: Path, closures_document: str, mixed_document: str) -> Path:
    """Directory of note documents, including a nested one and a non-markdown file."""
    root = tmp_path / "notes"
    (root / "advanced").mkdir(parents=True)
    (root / "scope.md").write_text(closures_document, encoding="utf-8")
    (root / "advanced" / "async.md").write_text(mixed_document, encoding="utf-8")
    (root / "README.txt").write_text("# Not a note\ntags: ignored\n", encoding="utf-8")
    return root


@pytest.fixture
def entry_factory():
    """Factory for valid entries: entry_factory("id", tags="a, b", ...)."""
    return make_entry
