"""Configuration models for snippet-kb.

This module provides Pydantic configuration models for the parser and the
sandbox runner, plus a loader that accepts defaults, a mapping, or a YAML
file.

Usage:
    from snippet_kb.core.config import load_config

    config = load_config(Path("snippet-kb.yaml"))
    timeout = config.sandbox.timeout_ms

Example YAML:
    parser:
      default_difficulty: intermediate
    sandbox:
      timeout_ms: 500
      max_concurrency: 8
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from snippet_kb.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "snippet-kb.yaml"


class ParserConfig(BaseModel):
    """Document parsing configuration.

    Attributes:
        default_difficulty: Difficulty for sections that do not declare one.
        code_languages: Fence info strings treated as runnable code.
            The empty string stands for an untagged fence.
        output_languages: Fence info strings holding expected output lines.

    """

    model_config = ConfigDict(frozen=True)

    default_difficulty: Literal["basic", "intermediate", "advanced"] = Field(
        default="basic",
        description="Difficulty for sections without explicit difficulty",
    )
    code_languages: tuple[str, ...] = Field(
        default=("", "js", "javascript", "mjs", "cjs", "node"),
        description="Fence languages treated as executable code",
    )
    output_languages: tuple[str, ...] = Field(
        default=("output", "expected"),
        description="Fence languages holding expected output lines",
    )

    @field_validator("code_languages", "output_languages", mode="after")
    @classmethod
    def normalize_languages(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Lowercase and strip fence languages."""
        return tuple(lang.strip().lower() for lang in v)


class SandboxConfig(BaseModel):
    """Sandbox runner configuration.

    Attributes:
        node_path: Node.js executable name or path.
        timeout_ms: Per-run execution budget in milliseconds.
        startup_grace_ms: Extra wall-clock allowance for process startup.
        max_concurrency: Default bound on concurrent runs in a batch.
        memory_limit_mb: V8 old-space cap passed to node.
        node_args: Extra flags passed to node before the harness script.
        permission_model: Enable node's permission model (file reads limited
            to the harness, no child processes or workers).
        max_output_lines: Output line budget per run; exceeding it fails
            the run with OutputLimitError.
        max_line_length: Longest printed line; longer lines are cut and
            fail the run with OutputLimitError.

    """

    model_config = ConfigDict(frozen=True)

    node_path: str = Field(
        default="node",
        description="Node.js executable name or absolute path",
    )
    timeout_ms: int = Field(
        default=2000,
        ge=10,
        le=600000,
        description="Per-run execution timeout in milliseconds",
    )
    startup_grace_ms: int = Field(
        default=3000,
        ge=0,
        le=60000,
        description="Wall-clock allowance for interpreter startup",
    )
    max_concurrency: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum number of sandbox runs in flight per batch",
    )
    memory_limit_mb: int = Field(
        default=64,
        ge=16,
        le=4096,
        description="Heap limit for each sandbox process in megabytes",
    )
    node_args: tuple[str, ...] = Field(
        default=(),
        description="Additional node command-line flags",
    )
    permission_model: bool = Field(
        default=True,
        description="Start node with its permission model on runtimes that support it",
    )
    max_output_lines: int = Field(
        default=10000,
        ge=1,
        le=1000000,
        description="Stdout and stderr lines a snippet may print before it is stopped",
    )
    max_line_length: int = Field(
        default=65536,
        ge=1,
        le=1000000,
        description="Characters allowed in one printed line",
    )


class SnippetKBConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    parser: ParserConfig = Field(default_factory=ParserConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """Read a YAML configuration file into a dictionary.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.

    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {config_path}: {e}") from e

    if not content.strip():
        return {}

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        line_info = ""
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            line_info = f" (line {mark.line + 1}, column {mark.column + 1})"
        raise ConfigError(f"Invalid YAML in {config_path}{line_info}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid configuration in {config_path}: root element must be a mapping, "
            f"got {type(data).__name__}"
        )
    return data


def load_config(source: Mapping[str, Any] | Path | str | None = None) -> SnippetKBConfig:
    """Load configuration from defaults, a mapping, or a YAML file.

    Args:
        source: None for defaults, a mapping of raw values, or a path to a
            YAML file.

    Returns:
        Validated SnippetKBConfig.

    Raises:
        ConfigError: If the source cannot be read or fails validation.

    """
    if source is None:
        return SnippetKBConfig()

    if isinstance(source, (str, Path)):
        config_path = Path(source)
        data: Mapping[str, Any] = _read_yaml(config_path)
        logger.debug("Loaded configuration from %s", config_path)
    else:
        data = source

    try:
        return SnippetKBConfig.model_validate(dict(data))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {details}") from e
