"""Shared helpers for the snippet-kb command line."""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from snippet_kb.core.config import DEFAULT_CONFIG_FILENAME, SnippetKBConfig, load_config
from snippet_kb.core.exceptions import ConfigError

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging with a Rich handler on stderr.

    Args:
        verbose: Enable DEBUG level.
        quiet: Only show errors. Ignored when verbose is set.

    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose, rich_tracebacks=False)],
        force=True,
    )


def _error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def _warning(message: str) -> None:
    err_console.print(f"[yellow]Warning:[/yellow] {message}")


def _info(message: str) -> None:
    console.print(f"[cyan]{message}[/cyan]")


def _load_cli_config(config_path: Path | None) -> SnippetKBConfig:
    """Load configuration for a CLI command.

    Uses ./snippet-kb.yaml when present and no path is given.

    Raises:
        typer.Exit: With EXIT_CONFIG_ERROR if the configuration is invalid.

    """
    if config_path is None:
        default = Path(DEFAULT_CONFIG_FILENAME)
        if not default.is_file():
            return load_config()
        config_path = default

    try:
        return load_config(config_path)
    except ConfigError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
