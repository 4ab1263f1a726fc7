r"""Command-line entry point for the release pipeline.

Invoked by CI on a push to the release branch (``release-pipeline`` or
``python -m release_pipeline``). It takes no pipeline parameters beyond the
repository state: the version comes from the version file and everything
else from the environment (see :mod:`release_pipeline.settings`). The flags
below only override those values.

Exit status is binary: ``0`` when the release completed (or was skipped
because the push was not to the release branch), ``1`` otherwise.

Examples
--------
>>> from release_pipeline.cli import main
>>> main(["--dry-run", "--no-log-file"])  # doctest: +SKIP
0
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from release_pipeline.config import LOG_DIRNAME, LOG_FILENAME, LOG_FORMAT, TAG_CONFLICT_POLICIES
from release_pipeline.exceptions import AppError, ConfigurationError, ExecutionError
from release_pipeline.orchestration.orchestrator import PipelineState, RunReport
from release_pipeline.orchestration.release import ReleaseRunner, plan
from release_pipeline.orchestration.status import (
    render_plan,
    render_run_summary,
    render_stage_table,
)
from release_pipeline.settings import ReleaseSettings, load_settings
from release_pipeline.stages.version import resolve_version

logger = logging.getLogger(__name__)


def configure_logging(
    level: str = "INFO", enable_file: bool = True, log_dir: Path | None = None
) -> None:
    r"""Configure root logging for a pipeline run.

    All existing root handlers are replaced by a console handler and,
    unless disabled, a file handler at ``<log_dir>/release_pipeline.log``.

    Parameters
    ----------
    level : str, optional
        Logging level name, e.g. ``"DEBUG"`` or ``"INFO"``.
    enable_file : bool, optional
        Whether to add the file handler.
    log_dir : Path | None, optional
        Directory for the log file; defaults to ``./logs``.

    Notes
    -----
    File handler failures (read-only checkout, missing permissions) are
    tolerated; the run then logs to the console only.
    """
    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if enable_file:
        directory = Path(log_dir) if log_dir is not None else Path.cwd() / LOG_DIRNAME
        try:
            directory.mkdir(parents=True, exist_ok=True)
            handlers.insert(0, logging.FileHandler(directory / LOG_FILENAME, mode="a"))
        except OSError:
            pass
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for a release run.

    Returns
    -------
    argparse.Namespace
        Attributes ``repo``, ``version_file``, ``toolchain``, ``remote``,
        ``tag_conflict``, ``ref``, ``dry_run``, ``log_level`` and
        ``no_log_file``.
    """
    parser = argparse.ArgumentParser(
        prog="release-pipeline",
        description="Test, tag and publish a release of the workspace.",
    )
    parser.add_argument("--repo", type=str, default=str(Path.cwd()))
    parser.add_argument("--version-file", type=str, default=None)
    parser.add_argument(
        "--toolchain",
        action="append",
        default=None,
        help="Toolchain to test with; repeat for a matrix.",
    )
    parser.add_argument("--remote", type=str, default=None)
    parser.add_argument("--tag-conflict", choices=TAG_CONFLICT_POLICIES, default=None)
    parser.add_argument(
        "--ref",
        type=str,
        default=os.environ.get("GITHUB_REF"),
        help="Pushed ref; runs for other branches than the release branch are skipped.",
    )
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument(
        "--log-level", type=str, default=os.environ.get("LOG_LEVEL", "INFO")
    )
    parser.add_argument("--no-log-file", action="store_true")
    return parser.parse_args(argv)


def is_release_ref(ref: str | None, release_branch: str) -> bool:
    """Return True when ``ref`` is absent or names the release branch.

    Examples
    --------
    >>> is_release_ref("refs/heads/main", "main")
    True
    >>> is_release_ref("refs/heads/feature", "main")
    False
    """
    if not ref:
        return True
    return ref in (f"refs/heads/{release_branch}", release_branch)


async def _run_release(runner: ReleaseRunner) -> RunReport:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass
    try:
        return await runner.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _print_plan(console: Console, settings: ReleaseSettings) -> None:
    try:
        version: str | None = resolve_version(settings.version_file).value
    except ConfigurationError as error:
        logger.warning("%s", error)
        version = None
    console.print(render_plan(plan(settings), version=version))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the release pipeline and return the process exit status."""
    args = parse_arguments(argv)
    disable_file = bool(
        args.no_log_file
        or os.environ.get("DISABLE_FILE_LOGS")
        or os.environ.get("PYTEST_CURRENT_TEST")
    )
    repo = Path(args.repo)
    configure_logging(args.log_level, enable_file=not disable_file, log_dir=repo / LOG_DIRNAME)
    console = Console()

    try:
        settings = load_settings(
            repo,
            version_file=args.version_file,
            toolchains=args.toolchain,
            remote=args.remote,
            tag_conflict_policy=args.tag_conflict,
        )
    except ConfigurationError as error:
        logger.error("Invalid configuration: %s", error)
        return 1

    if not is_release_ref(args.ref, settings.release_branch):
        logger.info(
            "Ref %s is not the release branch %s; skipping release",
            args.ref,
            settings.release_branch,
        )
        return 0

    if args.dry_run:
        _print_plan(console, settings)
        return 0

    runner = ReleaseRunner(settings)
    try:
        report = asyncio.run(_run_release(runner))
    except ConfigurationError as error:
        logger.error("Invalid pipeline: %s", error)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 1
    except (AppError, OSError) as exc:
        logger.error("Release aborted: %s", exc)
        error = exc if isinstance(exc, AppError) else ExecutionError(
            f"{type(exc).__name__}: {exc}", context={"exception": type(exc).__name__}
        )
        report = RunReport(PipelineState.NOT_STARTED, error=error)

    if report.stages:
        console.print(render_stage_table(report.stages))
    console.print(render_run_summary(report))
    return report.exit_code


__all__ = ["configure_logging", "is_release_ref", "main", "parse_arguments"]
