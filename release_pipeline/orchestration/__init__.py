"""Pipeline orchestration: stage graph execution, release wiring and reporting."""

from __future__ import annotations

from .orchestrator import (
    PipelineOrchestrator,
    PipelineState,
    RunReport,
    Stage,
    StageKind,
    StageStatus,
)
from .release import ReleaseRunner, build_release_pipeline, plan

__all__ = [
    "PipelineOrchestrator",
    "PipelineState",
    "ReleaseRunner",
    "RunReport",
    "Stage",
    "StageKind",
    "StageStatus",
    "build_release_pipeline",
    "plan",
]
