"""Verification plane: build-system collaborator, artifact storage, and validation runner."""

from prbatch.verification_plane.artifacts import ArtifactStore
from prbatch.verification_plane.build_system import (
    BuildSystem,
    TargetResult,
    build_flags,
    split_command,
    terminate_process_tree,
)
from prbatch.verification_plane.pipeline import (
    InstallOutcome,
    Stage,
    StageName,
    StageResult,
    ValidationRunner,
    ValidationSettings,
    ValidationVerdict,
    build_stages,
)

__all__ = [
    "ArtifactStore",
    "BuildSystem",
    "InstallOutcome",
    "Stage",
    "StageName",
    "StageResult",
    "TargetResult",
    "ValidationRunner",
    "ValidationSettings",
    "ValidationVerdict",
    "build_flags",
    "build_stages",
    "split_command",
    "terminate_process_tree",
]
