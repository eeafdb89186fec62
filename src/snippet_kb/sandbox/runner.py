"""Sandbox runner for executing entry snippets with Node.js.

Every run gets a fresh, disposable node process started with an empty
environment, a throwaway working directory, a heap cap and, on node 20+,
the permission model. Inside it the harness evaluates the snippet in a new
vm context whose console and timers are built inside that context, so no
host object is reachable. Output is streamed line by line so stdout
survives a throw or a timeout, and is capped in line count and length.

Timeouts are enforced twice: the harness aborts the snippet after
timeout_ms, and the runner kills the process once timeout_ms plus the
startup grace has passed on the wall clock.

Usage:
    from snippet_kb.sandbox import SandboxRunner, matches

    runner = SandboxRunner()
    result = runner.run(entry)
    if not matches(result, entry):
        print(result.stdout_lines, result.error)

    # Async, bounded concurrency; cancelling the awaiting task kills
    # only the affected processes.
    results = await runner.arun_batch(entries, max_concurrency=4)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import shutil
import sys
import tempfile
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from snippet_kb.core.async_utils import run_sync
from snippet_kb.core.config import SandboxConfig
from snippet_kb.knowledge.models import Entry
from snippet_kb.sandbox.models import (
    SANDBOX_ERROR,
    TIMEOUT_ERROR,
    ExecutionError,
    ExecutionResult,
    SandboxRun,
    state_for,
)

logger = logging.getLogger(__name__)

HARNESS_PATH = Path(__file__).with_name("harness.js")

# Max bytes for one streamed output line
STREAM_LIMIT = 8 * 1024 * 1024

# Seconds to wait for a process to exit after it reported completion
EXIT_WAIT_SECONDS = 2.0

# Seconds to wait for `node --version`
VERSION_CHECK_SECONDS = 5.0

IS_WINDOWS = sys.platform == "win32"

_NODE_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)")


def permission_flags(version: str) -> list[str]:
    """Node flags enabling the permission model for a `node --version` string.

    The flag is `--permission` from node 22.13 / 23.5 on and
    `--experimental-permission` on node 20 up to those releases.
    Older runtimes get no flags. File reads are limited to the harness;
    writes, child processes and workers are denied.
    """
    match = _NODE_VERSION_RE.match(version.strip())
    if match is None:
        return []
    major, minor = int(match.group(1)), int(match.group(2))
    if major >= 24 or (major == 23 and minor >= 5) or (major == 22 and minor >= 13):
        flag = "--permission"
    elif major >= 20:
        flag = "--experimental-permission"
    else:
        return []
    return [flag, f"--allow-fs-read={HARNESS_PATH}"]


class _Capture:
    """Mutable output buffers for one run."""

    def __init__(self) -> None:
        self.stdout: list[str] = []
        self.stderr: list[str] = []
        self.done: dict[str, Any] | None = None
        self.overflow = False


class SandboxRunner:
    """Runs entry code in isolated node processes.

    The runner holds no per-run state, so one instance can serve many
    concurrent runs and stays usable after timeouts and failures.

    Args:
        config: Sandbox configuration (defaults if None).

    """

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self._config = config or SandboxConfig()
        self._permission_cache: dict[str, list[str]] = {}

    @property
    def config(self) -> SandboxConfig:
        """Active sandbox configuration."""
        return self._config

    def resolve_node(self) -> str | None:
        """Find the node executable, or None if it is not installed."""
        return shutil.which(self._config.node_path)

    def _build_command(self, node: str, permission: Sequence[str] = ()) -> list[str]:
        return [
            node,
            *permission,
            f"--max-old-space-size={self._config.memory_limit_mb}",
            *self._config.node_args,
            str(HARNESS_PATH),
        ]

    def _environment(self) -> dict[str, str]:
        env: dict[str, str] = {}
        if IS_WINDOWS:
            # CreateProcess needs SYSTEMROOT for the runtime to start
            env["SYSTEMROOT"] = os.environ.get("SYSTEMROOT", "")
        return env

    async def _permission_args(self, node: str) -> list[str]:
        """Permission model flags for this node binary, checked once per path."""
        if not self._config.permission_model:
            return []
        cached = self._permission_cache.get(node)
        if cached is not None:
            return cached

        version = ""
        try:
            version_check = await asyncio.create_subprocess_exec(
                node,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._environment(),
            )
        except OSError as e:
            logger.debug("Cannot check node version for %s: %s", node, e)
        else:
            try:
                out, _ = await asyncio.wait_for(
                    version_check.communicate(), timeout=VERSION_CHECK_SECONDS
                )
                version = out.decode("utf-8", errors="replace")
            except TimeoutError:
                logger.debug("Node version check for %s timed out", node)
            finally:
                await self._kill(version_check)

        flags = permission_flags(version)
        if not flags:
            logger.debug("Node %r has no permission model, running without it", version.strip())
        self._permission_cache[node] = flags
        return flags

    def _result(
        self,
        entry: Entry,
        run: SandboxRun,
        capture: _Capture,
        error: ExecutionError | None,
        timed_out: bool = False,
    ) -> ExecutionResult:
        result = ExecutionResult(
            stdout_lines=tuple(capture.stdout),
            error=error,
            timed_out=timed_out,
            state=state_for(error, timed_out),
            stderr_lines=tuple(capture.stderr),
            duration_ms=run.elapsed_ms,
            entry_id=entry.id,
        )
        return run.finish(result)

    async def _read_stream(self, process: asyncio.subprocess.Process, capture: _Capture) -> None:
        assert process.stdout is not None
        while True:
            try:
                raw = await process.stdout.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # A line longer than the stream limit cannot be framed
                capture.overflow = True
                return
            if not raw:
                return
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-protocol sandbox output: %r", raw[:200])
                continue

            kind = message.get("type")
            if kind == "log":
                capture.stdout.append(str(message.get("line", "")))
            elif kind == "stderr":
                capture.stderr.append(str(message.get("line", "")))
            elif kind == "done":
                capture.done = message
                return

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(process.wait(), timeout=EXIT_WAIT_SECONDS)

    async def _drain(self, stderr_task: asyncio.Future[bytes]) -> bytes:
        """Collect stderr once the process is gone, giving up after a short wait."""
        try:
            return await asyncio.wait_for(stderr_task, timeout=EXIT_WAIT_SECONDS)
        except (TimeoutError, OSError):
            return b""

    async def arun(self, entry: Entry, *, timeout_ms: int | None = None) -> ExecutionResult:
        """Execute an entry's code and capture its output.

        Never raises for snippet or sandbox failures: those are reported in
        the returned ExecutionResult. Cancelling the awaiting task kills the
        process and propagates CancelledError.

        Args:
            entry: Entry to execute.
            timeout_ms: Per-call override of the configured timeout.

        Returns:
            ExecutionResult in a terminal state.

        """
        budget_ms = timeout_ms if timeout_ms is not None else self._config.timeout_ms
        if budget_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {budget_ms}")

        run = SandboxRun(entry.id)
        run.start()
        capture = _Capture()

        if entry.code is None:
            return self._result(
                entry, run, capture, ExecutionError(SANDBOX_ERROR, "Entry has no code to run")
            )

        node = self.resolve_node()
        if node is None:
            logger.warning("Node.js executable not found: %s", self._config.node_path)
            message = f"Node.js executable not found: {self._config.node_path}"
            return self._result(entry, run, capture, ExecutionError(SANDBOX_ERROR, message))

        request = {
            "code": entry.code,
            "timeout_ms": budget_ms,
            "max_output_lines": self._config.max_output_lines,
            "max_line_length": self._config.max_line_length,
        }
        payload = json.dumps(request).encode("utf-8")
        deadline = (budget_ms + self._config.startup_grace_ms) / 1000.0
        permission = await self._permission_args(node)

        with tempfile.TemporaryDirectory(prefix="snippet-kb-") as workdir:
            try:
                process = await asyncio.create_subprocess_exec(
                    *self._build_command(node, permission),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=workdir,
                    env=self._environment(),
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                logger.warning("Failed to start sandbox process: %s", e)
                return self._result(
                    entry, run, capture, ExecutionError(SANDBOX_ERROR, f"Cannot start node: {e}")
                )

            assert process.stdin is not None and process.stderr is not None
            stderr_task = asyncio.ensure_future(process.stderr.read())
            timed_out = False
            try:
                with contextlib.suppress(ConnectionResetError, BrokenPipeError):
                    process.stdin.write(payload)
                    await process.stdin.drain()
                process.stdin.close()

                try:
                    await asyncio.wait_for(self._read_stream(process, capture), timeout=deadline)
                except TimeoutError:
                    logger.debug("Sandbox run for %s hit wall-clock deadline", entry.id)
                    timed_out = True
                else:
                    if not capture.overflow:
                        # Let the harness exit on its own so the exit code is real
                        with contextlib.suppress(TimeoutError):
                            await asyncio.wait_for(process.wait(), timeout=EXIT_WAIT_SECONDS)
            except asyncio.CancelledError:
                logger.debug("Sandbox run for %s cancelled", entry.id)
                run.cancel()
                stderr_task.cancel()
                raise
            finally:
                await self._kill(process)

            stderr = await self._drain(stderr_task)

        if timed_out:
            return self._result(
                entry,
                run,
                capture,
                ExecutionError(TIMEOUT_ERROR, f"Execution timed out after {budget_ms}ms"),
                timed_out=True,
            )

        if capture.overflow:
            message = f"Sandbox output line exceeded {STREAM_LIMIT} bytes"
            logger.warning("Sandbox run for %s stopped: %s", entry.id, message)
            return self._result(entry, run, capture, ExecutionError(SANDBOX_ERROR, message))

        done = capture.done
        if done is None:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            tail = detail[-1] if detail else "no diagnostics"
            message = f"Sandbox process exited with code {process.returncode}: {tail}"
            logger.warning("Sandbox run for %s crashed: %s", entry.id, message)
            return self._result(entry, run, capture, ExecutionError(SANDBOX_ERROR, message))

        raw_error = done.get("error")
        error = None
        if isinstance(raw_error, dict):
            error = ExecutionError(
                str(raw_error.get("name", "Error")), str(raw_error.get("message", ""))
            )
        return self._result(entry, run, capture, error, timed_out=bool(done.get("timed_out")))

    def run(self, entry: Entry, *, timeout_ms: int | None = None) -> ExecutionResult:
        """Synchronous wrapper around arun()."""
        return run_sync(self.arun(entry, timeout_ms=timeout_ms))

    async def arun_batch(
        self,
        entries: Sequence[Entry],
        *,
        max_concurrency: int | None = None,
    ) -> list[ExecutionResult]:
        """Run many entries with bounded concurrency.

        A failing or timed-out entry never stops the batch.

        Args:
            entries: Entries to execute.
            max_concurrency: Maximum runs in flight (config default if None).

        Returns:
            Results in the same order as entries.

        """
        limit = max_concurrency if max_concurrency is not None else self._config.max_concurrency
        if limit < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {limit}")

        semaphore = asyncio.Semaphore(limit)

        async def bounded(entry: Entry) -> ExecutionResult:
            async with semaphore:
                return await self.arun(entry)

        started = time.monotonic()
        results = await asyncio.gather(*(bounded(entry) for entry in entries))
        logger.debug(
            "Sandbox batch of %d entries finished in %.1fs (concurrency=%d)",
            len(entries),
            time.monotonic() - started,
            limit,
        )
        return list(results)

    def run_batch(
        self,
        entries: Sequence[Entry],
        *,
        max_concurrency: int | None = None,
    ) -> list[ExecutionResult]:
        """Synchronous wrapper around arun_batch()."""
        return run_sync(self.arun_batch(entries, max_concurrency=max_concurrency))
