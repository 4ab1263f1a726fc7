"""Stage graph orchestrator with fail-fast gating.

The orchestrator owns sequencing and gating only. It executes a graph of
:class:`Stage` objects in a deterministic topological order, one stage at a
time, and starts a stage only when every predecessor has succeeded. The
first failure ends the run in the matching terminal state; nothing is
retried and nothing already done is reverted.

Collaborator errors are recorded, not interpreted: any
:class:`~release_pipeline.exceptions.AppError` fails the stage as-is, other
exceptions are wrapped in :class:`ExecutionError`, and a stage that exceeds
its timeout fails with :class:`TimeoutExceededError`.

Typical usage::

    orchestrator = PipelineOrchestrator(stages)
    report = await orchestrator.run()
    raise SystemExit(report.exit_code)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from release_pipeline.exceptions import (
    AppError,
    ConfigurationError,
    ExecutionError,
    PipelineCancelledError,
    TimeoutExceededError,
)

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageKind(str, Enum):
    TEST = "test"
    TAG = "tag"
    PUBLISH = "publish"


class PipelineState(str, Enum):
    NOT_STARTED = "not_started"
    TEST_RUNNING = "test_running"
    TEST_FAILED = "test_failed"
    TAGGING = "tagging"
    TAG_FAILED = "tag_failed"
    PUBLISHING = "publishing"
    PUBLISH_FAILED = "publish_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        PipelineState.TEST_FAILED,
        PipelineState.TAG_FAILED,
        PipelineState.PUBLISH_FAILED,
        PipelineState.COMPLETED,
        PipelineState.CANCELLED,
    }
)

_RUNNING_STATE = {
    StageKind.TEST: PipelineState.TEST_RUNNING,
    StageKind.TAG: PipelineState.TAGGING,
    StageKind.PUBLISH: PipelineState.PUBLISHING,
}

_FAILED_STATE = {
    StageKind.TEST: PipelineState.TEST_FAILED,
    StageKind.TAG: PipelineState.TAG_FAILED,
    StageKind.PUBLISH: PipelineState.PUBLISH_FAILED,
}

StageAction = Callable[[], Awaitable[Any]]


@dataclass
class Stage:
    """A step of the pipeline and its runtime state.

    Only the orchestrator mutates ``status``, ``error``, ``result`` and the
    timestamps.
    """

    name: str
    action: StageAction
    kind: StageKind
    needs: frozenset[str] = frozenset()
    timeout: float | None = None

    status: StageStatus = StageStatus.PENDING
    error: AppError | None = None
    result: Any = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass
class RunReport:
    """Externally observable outcome of a run."""

    state: PipelineState
    stages: list[Stage] = field(default_factory=list)
    version: str | None = None
    error: AppError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.COMPLETED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def failed_stage(self) -> Stage | None:
        return next((s for s in self.stages if s.status is StageStatus.FAILED), None)


TransitionCallback = Callable[[Stage, PipelineState], None]


def topological_order(stages: Sequence[Stage]) -> list[Stage]:
    """Return ``stages`` ordered so every stage follows its predecessors.

    Ties are broken by declaration order, so the result is deterministic.

    Raises
    ------
    ConfigurationError
        On duplicate names, unknown predecessors or a cycle.
    """
    by_name: dict[str, Stage] = {}
    for stage in stages:
        if stage.name in by_name:
            raise ConfigurationError(
                f"Duplicate stage name '{stage.name}'", context={"stage": stage.name}
            )
        by_name[stage.name] = stage
    for stage in stages:
        unknown = sorted(stage.needs - by_name.keys())
        if unknown:
            raise ConfigurationError(
                f"Stage '{stage.name}' needs unknown stage(s): {', '.join(unknown)}",
                context={"stage": stage.name, "unknown": unknown},
            )

    ordered: list[Stage] = []
    done: set[str] = set()
    remaining = list(stages)
    while remaining:
        ready = next((s for s in remaining if s.needs <= done), None)
        if ready is None:
            cycle = sorted(s.name for s in remaining)
            raise ConfigurationError(
                f"Stage graph has a cycle among: {', '.join(cycle)}",
                context={"stages": cycle},
            )
        ordered.append(ready)
        done.add(ready.name)
        remaining.remove(ready)
    return ordered


class PipelineOrchestrator:
    """Execute a stage graph with fail-fast gating.

    Parameters
    ----------
    stages : Sequence[Stage]
        Stage definitions; validated and ordered at construction time.
    on_transition : TransitionCallback | None, optional
        Called after every stage status change with the stage and the
        pipeline state (used for live status rendering).
    version : str | None, optional
        Release version recorded on the report.

    Raises
    ------
    ConfigurationError
        If the graph is empty or invalid.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        on_transition: TransitionCallback | None = None,
        version: str | None = None,
    ) -> None:
        if not stages:
            raise ConfigurationError("The pipeline has no stages")
        self.stages = topological_order(stages)
        self.on_transition = on_transition
        self.version = version
        self.state = PipelineState.NOT_STARTED
        self.publish_index: int | None = None
        self._cancel_requested = False
        self._started = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def execution_order(self) -> list[str]:
        return [s.name for s in self.stages]

    def cancel(self) -> None:
        """Stop scheduling stages that have not started yet.

        A stage already running is allowed to finish; completed stages are
        never reverted.
        """
        if not self._cancel_requested:
            logger.warning("Cancellation requested; no further stages will start")
        self._cancel_requested = True

    def _report(self, error: AppError | None = None) -> RunReport:
        return RunReport(
            state=self.state, stages=list(self.stages), version=self.version, error=error
        )

    def _notify(self, stage: Stage) -> None:
        if self.on_transition is None:
            return
        try:
            self.on_transition(stage, self.state)
        except Exception:
            # Display callbacks must not change the outcome of a run.
            logger.warning("Transition callback failed", exc_info=True)

    def _enter(self, stage: Stage) -> None:
        if stage.kind is StageKind.PUBLISH:
            self.publish_index = 0 if self.publish_index is None else self.publish_index + 1
        self.state = _RUNNING_STATE[stage.kind]
        stage.status = StageStatus.RUNNING
        stage.started_at = time.monotonic()
        if stage.kind is StageKind.PUBLISH:
            logger.info("Stage %s: running (publishing unit %d)", stage.name, self.publish_index)
        else:
            logger.info("Stage %s: running", stage.name)
        self._notify(stage)

    def _fail(self, stage: Stage, error: AppError) -> None:
        stage.status = StageStatus.FAILED
        stage.error = error
        stage.finished_at = time.monotonic()
        self.state = _FAILED_STATE[stage.kind]
        logger.error("Stage %s: failed (%s)", stage.name, error)
        self._notify(stage)

    async def _call(self, stage: Stage) -> Any:
        # A TimeoutError raised by the action itself is not a stage timeout.
        try:
            return await stage.action()
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise ExecutionError(
                f"{type(exc).__name__}: {exc}",
                stage=stage.name,
                context={"exception": type(exc).__name__},
            ) from exc

    async def _execute(self, stage: Stage) -> Any:
        if stage.timeout is None:
            return await self._call(stage)
        try:
            return await asyncio.wait_for(self._call(stage), stage.timeout)
        except asyncio.TimeoutError:
            raise TimeoutExceededError(
                f"Stage '{stage.name}' exceeded {stage.timeout:g}s",
                context={"stage": stage.name, "timeout": stage.timeout},
            ) from None

    async def run(self) -> RunReport:
        """Run the pipeline once and return its report.

        Each orchestrator runs at most once; stages never execute twice.

        Raises
        ------
        asyncio.CancelledError
            If the task running the pipeline is cancelled; the running stage
            is recorded as failed and the state becomes ``CANCELLED`` first.
        """
        if self._started:
            raise ConfigurationError("A pipeline run cannot be restarted")
        self._started = True
        logger.info("Pipeline started: %s", " -> ".join(self.execution_order()))

        for stage in self.stages:
            if self._cancel_requested:
                self.state = PipelineState.CANCELLED
                logger.warning("Pipeline cancelled before stage %s", stage.name)
                return self._report(PipelineCancelledError())

            by_name = {s.name: s for s in self.stages}
            blocked = sorted(
                n for n in stage.needs if by_name[n].status is not StageStatus.SUCCEEDED
            )
            if blocked:
                # Unreachable with fail-fast ordering; kept as a hard gate.
                error = ExecutionError(
                    f"Stage '{stage.name}' is gated by unfinished stage(s): {', '.join(blocked)}",
                    stage=stage.name,
                )
                self._fail(stage, error)
                return self._report(error)

            self._enter(stage)
            try:
                stage.result = await self._execute(stage)
            except asyncio.CancelledError:
                self._fail(stage, PipelineCancelledError(f"Stage '{stage.name}' was cancelled"))
                self.state = PipelineState.CANCELLED
                raise
            except AppError as error:
                self._fail(stage, error)
                return self._report(error)
            except Exception as exc:
                logger.debug("Unexpected error in stage %s", stage.name, exc_info=True)
                error = ExecutionError(
                    f"{type(exc).__name__}: {exc}",
                    stage=stage.name,
                    context={"exception": type(exc).__name__},
                )
                self._fail(stage, error)
                return self._report(error)

            stage.status = StageStatus.SUCCEEDED
            stage.finished_at = time.monotonic()
            logger.info(
                "Stage %s: succeeded in %.1fs", stage.name, stage.duration_seconds or 0.0
            )
            self._notify(stage)

        self.state = PipelineState.COMPLETED
        logger.info("Pipeline completed")
        return self._report()


__all__ = [
    "PipelineOrchestrator",
    "PipelineState",
    "RunReport",
    "Stage",
    "StageAction",
    "StageKind",
    "StageStatus",
    "TransitionCallback",
    "topological_order",
]
