"""Headless stage components of the release pipeline.

Each module implements one collaborator the orchestrator sequences:

- ``version``: Version Resolver (reads ``VERSION.txt``).
- ``matrix``: Toolchain Matrix Runner for the test stage.
- ``tagging``: Tag Publisher and the ``git`` client it drives.
- ``registry``: registry visibility probe used after each publish.
- ``publishing``: Package Publisher for ordered registry publication.

None of these modules knows about stage ordering or gating; that is the
orchestrator's job.
"""

from __future__ import annotations

from .matrix import CommandMatrixAction, MatrixEntry, MatrixResult, ToolchainMatrixRunner
from .publishing import PackagePublisher, PackageUnit, PublishReport
from .registry import RegistryClient
from .tagging import GitClient, TagOutcome, TagPublisher
from .version import ReleaseVersion, resolve_version

__all__ = [
    "CommandMatrixAction",
    "GitClient",
    "MatrixEntry",
    "MatrixResult",
    "PackagePublisher",
    "PackageUnit",
    "PublishReport",
    "RegistryClient",
    "ReleaseVersion",
    "TagOutcome",
    "TagPublisher",
    "ToolchainMatrixRunner",
    "resolve_version",
]
