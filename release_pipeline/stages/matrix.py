"""Toolchain matrix runner for the test stage.

Runs the build-then-test action once per toolchain identifier, all entries
concurrently, and judges the stage only after every entry has finished. An
entry failure never cancels its siblings, so every failure is observable in
the result; upward, the stage reports a single aggregate outcome.

Concurrency follows the same pattern as the rest of the package's
asynchronous fan-out: an ``asyncio.Semaphore`` bounds the number of
entries in flight and ``asyncio.gather`` joins them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from release_pipeline.commands import output_tail, redact, render_command, run_command
from release_pipeline.config import MATRIX_TARGET_SUBDIR, TOOLCHAIN_ENV
from release_pipeline.exceptions import AppError, ConfigurationError, ExecutionError

logger = logging.getLogger(__name__)


class EntryStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class MatrixEntry:
    """One toolchain's slot in the test matrix."""

    toolchain: str
    status: EntryStatus = EntryStatus.PENDING
    log_path: Path | None = None
    error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class MatrixResult:
    """Aggregate outcome of a matrix run."""

    entries: list[MatrixEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.entries) and all(
            e.status is EntryStatus.SUCCEEDED for e in self.entries
        )

    @property
    def failed_entries(self) -> list[MatrixEntry]:
        return [e for e in self.entries if e.status is EntryStatus.FAILED]

    def raise_for_failure(self) -> None:
        """Raise one :class:`ExecutionError` naming every failed toolchain."""
        if self.succeeded:
            return
        failed = self.failed_entries
        names = ", ".join(e.toolchain for e in failed) or "unknown"
        raise ExecutionError(
            f"Test matrix failed for: {names}",
            stage="test",
            context={
                "failed": {
                    e.toolchain: {
                        "error": e.error,
                        "log": str(e.log_path) if e.log_path else None,
                    }
                    for e in failed
                },
                "total": len(self.entries),
            },
        )


ToolchainAction = Callable[[MatrixEntry], Awaitable[None]]


class ToolchainMatrixRunner:
    """Run a toolchain action for every matrix entry in parallel.

    Parameters
    ----------
    action : ToolchainAction
        Coroutine function receiving the entry; it raises to signal failure
        and may set ``entry.log_path``.
    max_parallel : int, optional
        Upper bound on concurrently running entries.
    """

    def __init__(self, action: ToolchainAction, *, max_parallel: int = 3) -> None:
        self.action = action
        self.max_parallel = max(1, int(max_parallel))

    async def run(self, toolchains: Iterable[str]) -> MatrixResult:
        """Run all entries and wait for every one of them to finish.

        Raises
        ------
        ConfigurationError
            If ``toolchains`` is empty.
        """
        names = list(dict.fromkeys(t.strip() for t in toolchains if t and t.strip()))
        if not names:
            raise ConfigurationError("The toolchain matrix is empty")

        result = MatrixResult([MatrixEntry(name) for name in names])
        semaphore = asyncio.Semaphore(self.max_parallel)
        logger.info("Running test matrix: %s", ", ".join(names))
        await asyncio.gather(
            *(self._run_entry(entry, semaphore) for entry in result.entries)
        )
        logger.info(
            "Test matrix finished: %d/%d succeeded",
            len(result.entries) - len(result.failed_entries),
            len(result.entries),
        )
        return result

    async def _run_entry(self, entry: MatrixEntry, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            entry.status = EntryStatus.RUNNING
            started = time.monotonic()
            try:
                await self.action(entry)
            except AppError as error:
                entry.status = EntryStatus.FAILED
                entry.error = error.message
                logger.error("Toolchain %s failed: %s", entry.toolchain, error)
            except Exception as error:
                entry.status = EntryStatus.FAILED
                entry.error = str(error) or type(error).__name__
                logger.error(
                    "Toolchain %s failed unexpectedly", entry.toolchain, exc_info=True
                )
            else:
                entry.status = EntryStatus.SUCCEEDED
                logger.info("Toolchain %s passed", entry.toolchain)
            finally:
                entry.duration_seconds = time.monotonic() - started


class CommandMatrixAction:
    """Default matrix action: run the configured commands for a toolchain.

    Each command template may reference ``{toolchain}``. Every toolchain
    builds into its own ``CARGO_TARGET_DIR`` so parallel entries do not
    contend for the same build directory lock. The combined output is
    written to ``<log_dir>/matrix-<toolchain>.log`` with every value in ``secrets``
    masked; children inherit the process environment, tokens included.
    """

    def __init__(
        self,
        repo_root: Path,
        commands: Sequence[str],
        *,
        log_dir: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self.repo_root = Path(repo_root)
        self.commands = tuple(commands)
        self.secrets = tuple(s for s in secrets if s)
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.env = dict(TOOLCHAIN_ENV)
        if env:
            self.env.update(env)
        self.timeout = timeout

    async def __call__(self, entry: MatrixEntry) -> None:
        env = dict(self.env)
        env["CARGO_TARGET_DIR"] = str(
            self.repo_root / MATRIX_TARGET_SUBDIR / entry.toolchain
        )
        transcript: list[str] = []
        try:
            for template in self.commands:
                args = render_command(template, toolchain=entry.toolchain)
                result = await run_command(
                    args,
                    cwd=self.repo_root,
                    env=env,
                    timeout=self.timeout,
                    secrets=self.secrets,
                )
                transcript.append(redact(f"$ {' '.join(args)}\n{result.output}", self.secrets))
                if not result.ok:
                    raise ExecutionError(
                        f"'{' '.join(args)}' exited with {result.returncode}",
                        stage="test",
                        context={
                            "toolchain": entry.toolchain,
                            "output_tail": output_tail(result, self.secrets),
                        },
                    )
        finally:
            entry.log_path = self._write_log(entry.toolchain, transcript)

    def _write_log(self, toolchain: str, transcript: list[str]) -> Path | None:
        if self.log_dir is None:
            return None
        path = self.log_dir / f"matrix-{toolchain}.log"
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(transcript), encoding="utf-8")
        except OSError:
            logger.warning("Could not write matrix log %s", path, exc_info=True)
            return None
        return path


__all__ = [
    "CommandMatrixAction",
    "EntryStatus",
    "MatrixEntry",
    "MatrixResult",
    "ToolchainAction",
    "ToolchainMatrixRunner",
]
