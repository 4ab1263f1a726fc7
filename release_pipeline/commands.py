"""Controlled subprocess runner for the pipeline's external collaborators.

Every call to ``git``, ``rustup`` and ``cargo`` goes through
:func:`run_command`. The runner launches the child with an isolated copy of
the process environment, captures its output, enforces the caller's timeout
and makes sure secrets never reach a log record.

Error & Result Branches
-----------------------
- A non-zero exit status is returned, not raised; callers decide which
  exception from :mod:`release_pipeline.exceptions` applies.
- A missing executable raises :class:`ExecutionError`.
- An exceeded timeout kills the child and raises :class:`TimeoutExceededError`.
- Cancellation kills the child and re-raises ``asyncio.CancelledError``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from release_pipeline.config import FAILURE_OUTPUT_TAIL_LINES
from release_pipeline.exceptions import ExecutionError, TimeoutExceededError

logger = logging.getLogger(__name__)

_REDACTED = "***"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one finished subprocess."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Return stdout followed by stderr."""
        return (self.stdout or "") + (self.stderr or "")


def redact(text: str, secrets: Iterable[str | None] = ()) -> str:
    """Mask every non-empty secret value occurring in ``text``.

    Examples
    --------
    >>> redact("push https://token123@host", ["token123"])
    'push https://***@host'
    """
    for secret in secrets:
        if secret:
            text = text.replace(secret, _REDACTED)
    return text


def render_command(template: str, **values: str) -> list[str]:
    """Expand ``{placeholder}`` fields in ``template`` and split it shell-style.

    Raises
    ------
    ExecutionError
        If the template references an unknown placeholder or is empty.

    Examples
    --------
    >>> render_command("cargo +{toolchain} test --verbose", toolchain="beta")
    ['cargo', '+beta', 'test', '--verbose']
    """
    try:
        args = shlex.split(template.format(**values))
    except (KeyError, IndexError, ValueError) as exc:
        raise ExecutionError(
            f"Invalid command template {template!r}: {exc}",
            context={"template": template},
        ) from exc
    if not args:
        raise ExecutionError(
            "Command template expands to an empty command",
            context={"template": template},
        )
    return args


def output_tail(
    result: CommandResult,
    secrets: Iterable[str | None] = (),
    lines: int = FAILURE_OUTPUT_TAIL_LINES,
) -> str:
    """Return the last ``lines`` lines of a result's output, redacted."""
    tail = result.output.splitlines()[-lines:]
    return redact("\n".join(tail), secrets)


async def run_command(
    args: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    secrets: Sequence[str | None] = (),
) -> CommandResult:
    r"""Run ``args`` as a subprocess and capture its output.

    Parameters
    ----------
    args : Sequence[str]
        Executable and arguments.
    cwd : Path
        Working directory of the child (normally the repository root).
    env : Mapping[str, str] | None, optional
        Variables added on top of a copy of ``os.environ``.
    timeout : float | None, optional
        Upper bound in seconds; ``None`` waits indefinitely.
    secrets : Sequence[str | None], optional
        Values masked in every log line emitted for this command.

    Returns
    -------
    CommandResult
        Exit status and decoded output.

    Raises
    ------
    ExecutionError
        If the executable cannot be started.
    TimeoutExceededError
        If the command runs longer than ``timeout``.
    """
    argv = [str(a) for a in args]
    display = redact(shlex.join(argv), secrets)
    child_env = os.environ.copy()
    if env:
        child_env.update(env)

    logger.info("$ %s", display)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=child_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ExecutionError(
            f"Unable to start '{argv[0]}': {exc.strerror or exc}",
            context={"command": display},
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise TimeoutExceededError(
            f"Command exceeded {timeout:g}s: {display}",
            context={"command": display, "timeout": timeout},
        ) from None
    except asyncio.CancelledError:
        _kill(proc)
        raise

    result = CommandResult(
        args=tuple(argv),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if result.ok:
        logger.debug("Command succeeded: %s", display)
    else:
        logger.error("Command failed (Return code: %d): %s", result.returncode, display)
    return result


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def raise_for_status(
    result: CommandResult,
    message: str,
    *,
    stage: str | None = None,
    secrets: Sequence[str | None] = (),
) -> None:
    """Raise :class:`ExecutionError` if ``result`` is a failure."""
    if result.ok:
        return
    raise ExecutionError(
        f"{message} (Return code: {result.returncode})",
        stage=stage,
        context={
            "command": redact(shlex.join(result.args), secrets),
            "returncode": result.returncode,
            "output_tail": output_tail(result, secrets),
        },
    )


__all__ = [
    "CommandResult",
    "output_tail",
    "raise_for_status",
    "redact",
    "render_command",
    "run_command",
]
