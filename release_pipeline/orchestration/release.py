"""Wire the release stages into an orchestrated pipeline.

The release pipeline is the graph ``test -> tag -> publish:<unit> ...``.
Every publish stage needs the tag stage, the publish stages of the units it
depends on and the stage of the previous unit, so units are published in
their declared order and never before their dependencies succeeded.

:class:`ReleaseRunner` is the single entry point used by the CLI: it
resolves the version, serialises runs of the same version with a run-level
lock and executes the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from release_pipeline.exceptions import ParseError, RunInProgressError
from release_pipeline.locking import VersionLock
from release_pipeline.orchestration.orchestrator import (
    PipelineOrchestrator,
    PipelineState,
    RunReport,
    Stage,
    StageKind,
    TransitionCallback,
)
from release_pipeline.settings import ReleaseSettings
from release_pipeline.stages.matrix import CommandMatrixAction, MatrixResult, ToolchainMatrixRunner
from release_pipeline.stages.publishing import PackagePublisher, PackageUnit
from release_pipeline.stages.registry import RegistryClient
from release_pipeline.stages.tagging import GitClient, TagOutcome, TagPublisher
from release_pipeline.stages.version import ReleaseVersion, resolve_version

logger = logging.getLogger(__name__)

TEST_STAGE = "test"
TAG_STAGE = "tag"


def publish_stage_name(unit: PackageUnit) -> str:
    return f"publish:{unit.name}"


@dataclass(frozen=True)
class PlannedStage:
    name: str
    kind: StageKind
    needs: tuple[str, ...]
    timeout: float


def plan(settings: ReleaseSettings) -> list[PlannedStage]:
    """Return the stages a run would execute, without executing anything.

    Examples
    --------
    >>> [p.name for p in plan(settings)]  # doctest: +SKIP
    ['test', 'tag', 'publish:valu3-derive', 'publish:valu3']
    """
    planned = [
        PlannedStage(TEST_STAGE, StageKind.TEST, (), settings.test_timeout),
        PlannedStage(TAG_STAGE, StageKind.TAG, (TEST_STAGE,), settings.tag_timeout),
    ]
    previous: str | None = None
    for unit in sorted(settings.packages, key=lambda u: u.order):
        needs = {TAG_STAGE, *(f"publish:{dep}" for dep in unit.depends_on)}
        if previous is not None:
            needs.add(previous)
        name = publish_stage_name(unit)
        planned.append(
            PlannedStage(
                name,
                StageKind.PUBLISH,
                tuple(sorted(needs)),
                settings.publish_timeout + settings.propagation_timeout,
            )
        )
        previous = name
    return planned


def default_matrix_runner(settings: ReleaseSettings) -> ToolchainMatrixRunner:
    action = CommandMatrixAction(
        settings.repo_root,
        settings.matrix_commands,
        log_dir=settings.log_dir,
        timeout=settings.test_timeout,
        secrets=settings.secrets,
    )
    return ToolchainMatrixRunner(action, max_parallel=settings.max_parallel_toolchains)


def default_tag_publisher(settings: ReleaseSettings) -> TagPublisher:
    git = GitClient(settings.repo_root, token=settings.git_token, timeout=settings.tag_timeout)
    return TagPublisher(
        git,
        remote=settings.remote,
        conflict_policy=settings.tag_conflict_policy,
        lock_dir=settings.lock_dir,
        lock_wait=settings.lock_wait,
    )


def default_package_publisher(settings: ReleaseSettings) -> PackagePublisher:
    registry = RegistryClient(settings.registry_api_url) if settings.registry_api_url else None
    return PackagePublisher(
        settings.repo_root,
        command_template=settings.publish_command,
        token=settings.registry_token,
        registry=registry,
        timeout=settings.publish_timeout,
        propagation_timeout=settings.propagation_timeout,
        propagation_interval=settings.propagation_interval,
    )


def build_release_pipeline(
    settings: ReleaseSettings,
    version: ReleaseVersion,
    *,
    matrix_runner: ToolchainMatrixRunner | None = None,
    tag_publisher: TagPublisher | None = None,
    package_publisher: PackagePublisher | None = None,
) -> list[Stage]:
    r"""Create the stage graph for releasing ``version``.

    Parameters
    ----------
    settings : ReleaseSettings
        Validated run configuration.
    version : ReleaseVersion
        Version being released; names the tag.
    matrix_runner, tag_publisher, package_publisher : optional
        Collaborators; built from ``settings`` when omitted. Tests inject
        fakes exposing the same coroutine methods.

    Returns
    -------
    list[Stage]
        Stages in declaration order; the orchestrator derives the execution
        order from their ``needs``.
    """
    matrix_runner = matrix_runner or default_matrix_runner(settings)
    tag_publisher = tag_publisher or default_tag_publisher(settings)
    package_publisher = package_publisher or default_package_publisher(settings)
    units = {publish_stage_name(u): u for u in settings.packages}

    async def run_tests() -> MatrixResult:
        result = await matrix_runner.run(settings.toolchains)
        result.raise_for_failure()
        return result

    async def publish_tag() -> TagOutcome:
        return await tag_publisher.publish(version)

    def publish_action(unit: PackageUnit) -> Callable:
        async def publish() -> None:
            await package_publisher.publish_unit(unit, version)

        return publish

    stages: list[Stage] = []
    for planned in plan(settings):
        if planned.kind is StageKind.TEST:
            action = run_tests
        elif planned.kind is StageKind.TAG:
            action = publish_tag
        else:
            action = publish_action(units[planned.name])
        stages.append(
            Stage(
                name=planned.name,
                action=action,
                kind=planned.kind,
                needs=frozenset(planned.needs),
                timeout=planned.timeout,
            )
        )
    return stages


class ReleaseRunner:
    r"""Run the release pipeline once for the version in the version file.

    Parameters
    ----------
    settings : ReleaseSettings
        Validated run configuration.
    on_transition : TransitionCallback | None, optional
        Forwarded to the orchestrator.
    matrix_runner, tag_publisher, package_publisher : optional
        Collaborator overrides, see :func:`build_release_pipeline`.

    Notes
    -----
    A run for a version that another live process is already releasing ends
    immediately with a :class:`~release_pipeline.exceptions.RunInProgressError`
    unless ``settings.lock_wait`` allows waiting for it.
    """

    def __init__(
        self,
        settings: ReleaseSettings,
        *,
        on_transition: TransitionCallback | None = None,
        matrix_runner: ToolchainMatrixRunner | None = None,
        tag_publisher: TagPublisher | None = None,
        package_publisher: PackagePublisher | None = None,
    ) -> None:
        self.settings = settings
        self.on_transition = on_transition
        self.matrix_runner = matrix_runner
        self.tag_publisher = tag_publisher
        self.package_publisher = package_publisher
        self.orchestrator: PipelineOrchestrator | None = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Request cancellation; applies to the orchestrator once it exists."""
        self._cancel_requested = True
        if self.orchestrator is not None:
            self.orchestrator.cancel()

    async def run(self) -> RunReport:
        """Resolve the version, take the run lock and execute the pipeline.

        Returns
        -------
        RunReport
            ``NOT_STARTED`` with an error when the version cannot be resolved
            or the run lock is held; otherwise the orchestrator's report.

        Raises
        ------
        ConfigurationError
            If the stage graph is invalid.
        """
        try:
            version = resolve_version(self.settings.version_file)
        except ParseError as error:
            logger.error("Cannot resolve the release version: %s", error)
            return RunReport(PipelineState.NOT_STARTED, error=error)
        logger.info("Releasing version %s", version)

        stages = build_release_pipeline(
            self.settings,
            version,
            matrix_runner=self.matrix_runner,
            tag_publisher=self.tag_publisher,
            package_publisher=self.package_publisher,
        )
        self.orchestrator = PipelineOrchestrator(
            stages, on_transition=self.on_transition, version=version.value
        )
        if self._cancel_requested:
            self.orchestrator.cancel()

        lock = VersionLock(
            self.settings.lock_dir, f"run-{version}", wait=self.settings.lock_wait
        )
        try:
            await lock.acquire()
        except RunInProgressError as error:
            logger.error("%s", error)
            return RunReport(
                PipelineState.NOT_STARTED,
                stages=list(self.orchestrator.stages),
                version=version.value,
                error=error,
            )
        try:
            return await self.orchestrator.run()
        finally:
            lock.release()


__all__ = [
    "PlannedStage",
    "ReleaseRunner",
    "build_release_pipeline",
    "plan",
    "publish_stage_name",
]
