"""Command line interface for snippet-kb.

Every command loads the given documents into a fresh in-memory knowledge
base, then queries or verifies it.

Example:
    $ snippet-kb ingest notes/
    $ snippet-kb tag closures notes/ --limit 5
    $ snippet-kb search "event loop" notes/
    $ snippet-kb sample 3 notes/ --seed 42 --difficulty basic
    $ snippet-kb verify notes/ --timeout-ms 500 --concurrency 8

Exit codes:
    0 = success
    1 = error, or verification mismatches / strict-mode warnings
    2 = configuration error
"""

import json
import logging
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from snippet_kb.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_SUCCESS,
    _error,
    _info,
    _load_cli_config,
    _setup_logging,
    _warning,
    console,
)
from snippet_kb.core.exceptions import MalformedEntry, ParserError, SnippetKBError
from snippet_kb.knowledge import KnowledgeBase, ParseWarning, QueryResult
from snippet_kb.knowledge.parser import DEFAULT_DOCUMENT_PATTERN
from snippet_kb.sandbox import SandboxRunner

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="snippet-kb",
    help="Snippet knowledge-base engine: ingest, query and verify code notes",
    no_args_is_help=True,
)

PATHS_ARGUMENT = typer.Argument(..., help="Document files or directories to load")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to snippet-kb.yaml")
PATTERN_OPTION = typer.Option(
    DEFAULT_DOCUMENT_PATTERN, "--pattern", help="Glob for documents inside directories"
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Only log errors")
JSON_OPTION = typer.Option(False, "--json", help="Print machine-readable JSON")


def _load_knowledge_base(
    paths: list[Path],
    config_path: Path | None,
    pattern: str,
) -> tuple[KnowledgeBase, list[ParseWarning]]:
    """Build a knowledge base from CLI paths, exiting on hard failures."""
    config = _load_cli_config(config_path)
    kb = KnowledgeBase(config=config)
    warnings: list[ParseWarning] = []

    for path in paths:
        if not path.exists():
            _error(f"Path not found: {path}")
            raise typer.Exit(code=EXIT_ERROR)
        try:
            report = kb.ingest_path(path, pattern=pattern)
        except ParserError as e:
            _error(str(e))
            raise typer.Exit(code=EXIT_ERROR) from None
        except SnippetKBError as e:
            _error(f"Failed to load {path}: {e}")
            raise typer.Exit(code=EXIT_ERROR) from None
        logger.debug("Ingested %d entries from %s", len(report.entries), path)
        warnings.extend(report.warnings)

    return kb, warnings


def _print_result(result: QueryResult, as_json: bool) -> None:
    if as_json:
        payload = {
            "query": {"kind": result.query.kind, **dict(result.query.params)},
            "entries": [entry.to_dict() for entry in result],
        }
        console.print_json(json.dumps(payload))
        return

    if not result:
        _info("No matching entries")
        return

    table = Table(title=f"{result.query.kind} ({len(result)} entries)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Tags", style="green")
    table.add_column("Difficulty")
    table.add_column("Code", justify="center")
    for entry in result:
        table.add_row(
            escape(entry.id),
            escape(entry.title),
            escape(", ".join(entry.tags)),
            entry.difficulty.value,
            "yes" if entry.has_code else "",
        )
    console.print(table)


@app.command(name="ingest")
def ingest_command(
    paths: list[Path] = PATHS_ARGUMENT,
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    strict: bool = typer.Option(False, "--strict", help="Exit with 1 if any warning occurs"),
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Parse documents and report entries and warnings."""
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, warnings = _load_knowledge_base(paths, config, pattern)

    index = kb.index
    with_code = sum(1 for entry in index.all_entries() if entry.has_code)
    _info(f"Loaded {len(index)} entries ({with_code} with code, {len(index.tags())} tags)")
    for warning in warnings:
        _warning(escape(str(warning)))

    if strict and warnings:
        raise typer.Exit(code=EXIT_ERROR)
    raise typer.Exit(code=EXIT_SUCCESS)


@app.command(name="tags")
def tags_command(
    paths: list[Path] = PATHS_ARGUMENT,
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """List tags with entry counts, in first-seen order."""
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, _ = _load_knowledge_base(paths, config, pattern)

    table = Table(title="Tags")
    table.add_column("Tag", style="green")
    table.add_column("Entries", justify="right")
    for tag, count in kb.index.tags().items():
        table.add_row(escape(tag), str(count))
    console.print(table)


@app.command(name="tag")
def tag_command(
    tag: str = typer.Argument(..., help="Tag to look up"),
    paths: list[Path] = PATHS_ARGUMENT,
    limit: int | None = typer.Option(None, "--limit", "-n", min=0, help="Maximum entries"),
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Show entries carrying a tag, in ingestion order."""
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, _ = _load_knowledge_base(paths, config, pattern)
    _print_result(kb.query.by_tag(tag, limit=limit), as_json)


@app.command(name="search")
def search_command(
    text: str = typer.Argument(..., help="Search terms"),
    paths: list[Path] = PATHS_ARGUMENT,
    limit: int | None = typer.Option(None, "--limit", "-n", min=0, help="Maximum entries"),
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Search titles and bodies, ranked by matching terms."""
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, _ = _load_knowledge_base(paths, config, pattern)
    _print_result(kb.query.search(text, limit=limit), as_json)


@app.command(name="sample")
def sample_command(
    count: int = typer.Argument(..., min=0, help="Number of entries to draw"),
    paths: list[Path] = PATHS_ARGUMENT,
    seed: int = typer.Option(0, "--seed", "-s", help="Random seed for a reproducible draw"),
    difficulty: str | None = typer.Option(
        None, "--difficulty", "-d", help="basic, intermediate or advanced"
    ),
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Draw a reproducible random sample of entries."""
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, _ = _load_knowledge_base(paths, config, pattern)
    try:
        result = kb.query.sample(count, seed=seed, difficulty=difficulty)
    except MalformedEntry as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
    _print_result(result, as_json)


@app.command(name="verify")
def verify_command(
    paths: list[Path] = PATHS_ARGUMENT,
    entry_ids: list[str] | None = typer.Option(
        None, "--id", help="Only verify these entry ids (repeatable)"
    ),
    timeout_ms: int | None = typer.Option(
        None, "--timeout-ms", "-t", min=10, help="Per-snippet timeout in milliseconds"
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-j", min=1, help="Maximum concurrent sandbox runs"
    ),
    config: Path | None = CONFIG_OPTION,
    pattern: str = PATTERN_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Run snippets in the sandbox and compare with expected output.

    Exits with 1 if any entry's output does not match, or its run timed
    out, crashed, or threw without declaring expected output.
    """
    _setup_logging(verbose=verbose, quiet=quiet)
    kb, _ = _load_knowledge_base(paths, config, pattern)

    sandbox_config = kb.config.sandbox
    if timeout_ms is not None:
        sandbox_config = sandbox_config.model_copy(update={"timeout_ms": timeout_ms})
    runner = SandboxRunner(sandbox_config)
    if runner.resolve_node() is None:
        _error(f"Node.js executable not found: {sandbox_config.node_path}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    outcomes = kb.verify(runner, entry_ids or None, max_concurrency=concurrency)
    failed = [o for o in outcomes if not o.passed]

    if as_json:
        payload = [
            {
                "passed": o.passed,
                "matched": o.matched,
                "expected_output": o.entry.to_dict()["expected_output"],
            }
            | o.result.to_dict()
            for o in outcomes
        ]
        console.print_json(json.dumps(payload))
    else:
        table = Table(title=f"Verification ({len(outcomes)} entries)")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("State")
        table.add_column("Result")
        table.add_column("Detail")
        for outcome in outcomes:
            if not outcome.matched:
                status = "[red]mismatch[/red]"
            elif not outcome.passed:
                status = "[red]error[/red]"
            else:
                status = "[green]pass[/green]"
            detail = str(outcome.result.error) if outcome.result.error else ""
            table.add_row(
                escape(outcome.entry.id),
                outcome.result.state.value,
                status,
                escape(detail),
            )
        console.print(table)

    if failed:
        _warning(f"{len(failed)} of {len(outcomes)} entries failed verification")
        raise typer.Exit(code=EXIT_ERROR)
    raise typer.Exit(code=EXIT_SUCCESS)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
