"""
prbatch — validation pipeline

Purpose
- Execute the fixed, ordered build pipeline against the current integration tip
  and capture its output into one artifact per key.

Normative behavior
- Stage order is authoritative: clean, build (only when a build target is
  configured), test. The chain stops at the first stage with a non-zero exit.
- Every stage's combined output is appended to the artifact of the call; the
  artifact is truncated when a ``validate`` call begins.
- ``install`` is a separate, observational step. Its result is recorded but
  never changes the verdict used for acceptance.
- Cancellation is checked before every stage.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from prbatch.constants import (
    DEFAULT_BUILD_TARGET,
    DEFAULT_CLEAN_TARGET,
    DEFAULT_INSTALL_TARGET,
    DEFAULT_TEST_TARGET,
)
from prbatch.utils.concurrency import CancellationToken
from prbatch.verification_plane.build_system import build_flags

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from prbatch.verification_plane.artifacts import ArtifactStore
    from prbatch.verification_plane.build_system import BuildSystem, TargetResult

logger = logging.getLogger(__name__)


class StageName(StrEnum):
    CLEAN = "clean"
    BUILD = "build"
    TEST = "test"
    INSTALL = "install"


@dataclass(frozen=True, slots=True)
class ValidationSettings:
    """Target names and shared flags. An empty target means unset."""

    clean_target: str = DEFAULT_CLEAN_TARGET
    build_target: str = DEFAULT_BUILD_TARGET
    test_target: str = DEFAULT_TEST_TARGET
    install_target: str = DEFAULT_INSTALL_TARGET
    jobs: int = 0
    args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.jobs < 0:
            raise ValueError("jobs must be >= 0")
        if not self.test_target.strip():
            raise ValueError("test target must not be empty")
        object.__setattr__(self, "args", tuple(self.args))

    @classmethod
    def from_config(cls, build_section: Mapping[str, object]) -> ValidationSettings:
        raw_args = build_section.get("args", ())
        args = tuple(str(item) for item in raw_args) if isinstance(raw_args, (list, tuple)) else ()
        raw_jobs = build_section.get("jobs", 0)
        return cls(
            clean_target=str(build_section.get("clean_target", DEFAULT_CLEAN_TARGET)),
            build_target=str(build_section.get("build_target", DEFAULT_BUILD_TARGET)),
            test_target=str(build_section.get("test_target", DEFAULT_TEST_TARGET)),
            install_target=str(build_section.get("install_target", DEFAULT_INSTALL_TARGET)),
            jobs=raw_jobs if isinstance(raw_jobs, int) and not isinstance(raw_jobs, bool) else 0,
            args=args,
        )

    @property
    def flags(self) -> tuple[str, ...]:
        return build_flags(jobs=self.jobs, args=self.args)

    @property
    def install_enabled(self) -> bool:
        return bool(self.install_target.strip())


@dataclass(frozen=True, slots=True)
class Stage:
    name: StageName
    target: str | None


def build_stages(settings: ValidationSettings) -> tuple[Stage, ...]:
    """Ordered validation stages for ``settings``; install is never part of the chain."""

    stages: list[Stage] = []
    if settings.clean_target.strip():
        stages.append(Stage(StageName.CLEAN, settings.clean_target.strip()))
    if settings.build_target.strip():
        stages.append(Stage(StageName.BUILD, settings.build_target.strip()))
    stages.append(Stage(StageName.TEST, settings.test_target.strip()))
    return tuple(stages)


@dataclass(frozen=True, slots=True)
class StageResult:
    stage: StageName
    exit_code: int
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class ValidationVerdict:
    """Pass/fail verdict of one ``validate`` call."""

    passed: bool
    artifact: Path
    failed_stage: StageName | None = None
    stages: tuple[StageResult, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class InstallOutcome:
    passed: bool
    exit_code: int
    artifact: Path


class ValidationRunner:
    """Run the ordered pipeline through ``build_system`` and record output in ``artifacts``."""

    def __init__(
        self,
        build_system: BuildSystem,
        artifacts: ArtifactStore,
        settings: ValidationSettings | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._build_system = build_system
        self._artifacts = artifacts
        self.settings = settings or ValidationSettings()
        self._token = cancel_token or CancellationToken()
        self._stages = build_stages(self.settings)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def install_enabled(self) -> bool:
        return self.settings.install_enabled

    def validate(self, artifact_key: str) -> ValidationVerdict:
        artifact = self._artifacts.begin(artifact_key)
        results: list[StageResult] = []
        for stage in self._stages:
            self._token.raise_if_cancelled()
            outcome = self._run_stage(stage, artifact_key)
            results.append(
                StageResult(
                    stage=stage.name, exit_code=outcome.exit_code, duration_ms=outcome.duration_ms
                )
            )
            if not outcome.ok:
                logger.info(
                    "validation failed at stage %s",
                    stage.name,
                    extra={"artifact_key": artifact_key, "exit_code": outcome.exit_code},
                )
                return ValidationVerdict(
                    passed=False,
                    artifact=artifact,
                    failed_stage=stage.name,
                    stages=tuple(results),
                )
        return ValidationVerdict(passed=True, artifact=artifact, stages=tuple(results))

    def install(self, artifact_key: str) -> InstallOutcome | None:
        """Run the install target once; ``None`` when no install target is configured."""

        if not self.install_enabled:
            return None
        self._token.raise_if_cancelled()
        stage = Stage(StageName.INSTALL, self.settings.install_target.strip())
        outcome = self._run_stage(stage, artifact_key)
        if not outcome.ok:
            logger.info("install failed", extra={"artifact_key": artifact_key})
        return InstallOutcome(
            passed=outcome.ok,
            exit_code=outcome.exit_code,
            artifact=self._artifacts.path_for(artifact_key),
        )

    def _run_stage(self, stage: Stage, artifact_key: str) -> TargetResult:
        argv = self._build_system.argv_for(stage.target, self.settings.flags)
        self._artifacts.append(artifact_key, f"==> {stage.name}: {shlex.join(argv)}")
        result = self._build_system.run_target(stage.target, self.settings.flags)
        self._artifacts.append(artifact_key, result.output)
        self._artifacts.append(
            artifact_key, f"==> {stage.name} exited with status {result.exit_code}"
        )
        return result


__all__ = [
    "InstallOutcome",
    "Stage",
    "StageName",
    "StageResult",
    "ValidationRunner",
    "ValidationSettings",
    "ValidationVerdict",
    "build_stages",
]
