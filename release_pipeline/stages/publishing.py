"""Ordered publication of package units to the registry.

Package units are published strictly one after another: each publish call,
including the wait for the registry to expose the new version, completes
before the next unit starts. A dependent crate declares a version-pinned
dependency on its sibling, so publishing out of order breaks resolution.

Callers supply units in a valid topological order; this module does not
verify the dependency graph. It does stop at the first failure. Registry
publications are irreversible, so units published before the failure stay
published and nothing is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from release_pipeline.commands import output_tail, render_command, run_command
from release_pipeline.config import (
    DEFAULT_PROPAGATION_INTERVAL,
    DEFAULT_PROPAGATION_TIMEOUT,
    DEFAULT_PUBLISH_COMMAND,
    REGISTRY_TOKEN_ENV,
    TOOLCHAIN_ENV,
)
from release_pipeline.exceptions import AppError, ExecutionError, PublishError
from release_pipeline.stages.registry import RegistryClient
from release_pipeline.stages.version import ReleaseVersion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageUnit:
    """A publishable package and the units that must be published first."""

    name: str
    order: int
    depends_on: frozenset[str] = frozenset()


class UnitStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PublishRecord:
    unit: PackageUnit
    status: UnitStatus = UnitStatus.PENDING
    error: AppError | None = None


@dataclass
class PublishReport:
    """Per-unit outcome of :meth:`PackagePublisher.publish_all`."""

    records: list[PublishRecord] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(r.status is UnitStatus.SUCCEEDED for r in self.records)

    @property
    def published(self) -> list[str]:
        return [r.unit.name for r in self.records if r.status is UnitStatus.SUCCEEDED]

    @property
    def failed_record(self) -> PublishRecord | None:
        return next((r for r in self.records if r.status is UnitStatus.FAILED), None)


class PackagePublisher:
    r"""Publish package units with the registry's publish command.

    Parameters
    ----------
    repo_root : Path
        Workspace root the publish command runs in.
    command_template : str, optional
        Publish command; ``{name}`` is replaced by the unit name.
    token : str | None, optional
        Registry token exposed to the command as ``CARGO_REGISTRY_TOKEN``.
    registry : RegistryClient | None, optional
        When set, each publish waits until the version is visible.
    timeout : float | None, optional
        Upper bound for the publish command itself.
    propagation_timeout, propagation_interval : float, optional
        Deadline and poll interval for the registry visibility wait.
    env : Mapping[str, str] | None, optional
        Extra environment for the publish command.
    """

    def __init__(
        self,
        repo_root: Path,
        *,
        command_template: str = DEFAULT_PUBLISH_COMMAND,
        token: str | None = None,
        registry: RegistryClient | None = None,
        timeout: float | None = None,
        propagation_timeout: float = DEFAULT_PROPAGATION_TIMEOUT,
        propagation_interval: float = DEFAULT_PROPAGATION_INTERVAL,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.command_template = command_template
        self.registry = registry
        self.timeout = timeout
        self.propagation_timeout = propagation_timeout
        self.propagation_interval = propagation_interval
        self._token = token or None
        self.env = dict(TOOLCHAIN_ENV)
        if env:
            self.env.update(env)

    async def publish_unit(self, unit: PackageUnit, version: ReleaseVersion) -> None:
        """Publish one unit and wait until the registry exposes it.

        Raises
        ------
        PublishError
            If the publish command fails.
        TimeoutExceededError
            If the command or the visibility wait exceeds its bound.
        """
        secrets = (self._token,)
        env = dict(self.env)
        if self._token:
            env[REGISTRY_TOKEN_ENV] = self._token
        try:
            args = render_command(self.command_template, name=unit.name)
        except ExecutionError as exc:
            raise PublishError(exc.message, unit=unit.name, context=exc.context) from exc

        logger.info("Publishing %s %s", unit.name, version)
        result = await run_command(
            args, cwd=self.repo_root, env=env, timeout=self.timeout, secrets=secrets
        )
        if not result.ok:
            raise PublishError(
                f"Publishing {unit.name} failed (Return code: {result.returncode})",
                unit=unit.name,
                context={"output_tail": output_tail(result, secrets)},
            )
        logger.info("Published %s %s", unit.name, version)

        if self.registry is not None:
            await self.registry.wait_until_visible(
                unit.name,
                version.value,
                timeout=self.propagation_timeout,
                interval=self.propagation_interval,
            )

    async def publish_all(
        self, units: Sequence[PackageUnit], version: ReleaseVersion
    ) -> PublishReport:
        """Publish ``units`` in order, stopping at the first failure.

        Units after a failed one are left ``pending``; units already
        published stay published.
        """
        report = PublishReport([PublishRecord(unit) for unit in units])
        for index, record in enumerate(report.records):
            record.status = UnitStatus.RUNNING
            try:
                await self.publish_unit(record.unit, version)
            except AppError as error:
                record.status = UnitStatus.FAILED
                record.error = error
                remaining = [r.unit.name for r in report.records[index + 1 :]]
                logger.error(
                    "Publishing halted at %s: %s (not attempted: %s)",
                    record.unit.name,
                    error,
                    ", ".join(remaining) or "none",
                )
                break
            record.status = UnitStatus.SUCCEEDED
        return report


__all__ = [
    "PackagePublisher",
    "PackageUnit",
    "PublishRecord",
    "PublishReport",
    "UnitStatus",
]
