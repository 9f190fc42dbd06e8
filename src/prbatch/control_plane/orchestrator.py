"""
prbatch — batch orchestration

Purpose
- Decide which changes of an ordered batch can be merged together, using one
  optimistic combined validation and, only on failure, a linear per-change
  fault-isolation pass.

Normative behavior
- Phase 1 (optimistic): merge every change in order onto the scratch branch
  without validating. Conflicting changes are excluded for the whole run.
  Nothing merged ends the run early as a failure.
- Phase 2 (combined): validate the Phase 1 tip once. On success every merged
  change is accepted, install runs once on the same tip, and the run ends.
- Phase 3 (isolation): reset the scratch branch to the original commit and
  merge again, validating after each merge. A failing change has its commit
  dropped (``reset --hard HEAD~1``) so later changes build on valid history.
  Changes that failed to merge in Phase 1 are not attempted again. The last
  Phase 1 merged change reuses the Phase 2 verdict when nothing has failed
  yet in this phase, because its cumulative state equals the one Phase 2
  already validated.
- A dirty working tree is rejected before anything is mutated.
- The guardian wraps the phases; observers are presentation only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from prbatch.constants import COMBINED_ARTIFACT_KEY
from prbatch.control_plane.guardian import CleanupError
from prbatch.domain import ChangeStatus, OrchestratorState, Phase, RunOutcome
from prbatch.observability.logging import correlation_scope
from prbatch.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from pathlib import Path

    from prbatch.control_plane.guardian import ResourceGuardian
    from prbatch.domain import ChangeRecord, ChangeSet
    from prbatch.integration_plane.git_engine import GitEngine
    from prbatch.integration_plane.integrator import IntegrationEngine
    from prbatch.verification_plane.pipeline import ValidationRunner, ValidationVerdict

logger = logging.getLogger(__name__)


class PreconditionError(RuntimeError):
    """Raised when the repository is not in a state a run may start from."""


class RunObserver(Protocol):
    def phase_started(self, phase: Phase, changes: ChangeSet) -> None: ...

    def change_in_flight(self, record: ChangeRecord | None) -> None: ...

    def change_updated(self, record: ChangeRecord) -> None: ...

    def run_finished(self, outcome: RunOutcome, guardian: ResourceGuardian) -> None: ...


class NullObserver:
    """Observer that ignores every notification."""

    def phase_started(self, phase: Phase, changes: ChangeSet) -> None:
        return None

    def change_in_flight(self, record: ChangeRecord | None) -> None:
        return None

    def change_updated(self, record: ChangeRecord) -> None:
        return None

    def run_finished(self, outcome: RunOutcome, guardian: ResourceGuardian) -> None:
        return None


@dataclass(frozen=True, slots=True)
class _CombinedResult:
    state: OrchestratorState
    verdict: ValidationVerdict
    merged: tuple[str, ...]


class Orchestrator:
    """Drive the optimistic / combined / isolation algorithm over one change set."""

    def __init__(
        self,
        *,
        git: GitEngine,
        integrator: IntegrationEngine,
        runner: ValidationRunner,
        guardian: ResourceGuardian,
        changes: ChangeSet,
        observer: RunObserver | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._git = git
        self._integrator = integrator
        self._runner = runner
        self._guardian = guardian
        self.changes = changes
        self._observer: RunObserver = observer or NullObserver()
        self._token = cancel_token or guardian.cancel_token

    def check_preconditions(self) -> None:
        if not self._git.working_tree_is_clean():
            raise PreconditionError(
                "working tree has uncommitted changes to tracked files; commit or stash them first"
            )
        current = self._git.current_reference()
        if current == self._guardian.branch:
            raise PreconditionError(
                f"the scratch branch {self._guardian.branch!r} is checked out; "
                "switch to the branch the batch should be tested against"
            )

    def run(self) -> RunOutcome:
        try:
            self.check_preconditions()
        except BaseException:
            try:
                self._guardian.cleanup()
            except CleanupError:
                logger.exception("cleanup failed after the precondition check stopped the run")
            raise
        with self._guardian:
            outcome = self._run_phases()
            self._observer.change_in_flight(None)
            self._observer.run_finished(outcome, self._guardian)
        return outcome

    def _run_phases(self) -> RunOutcome:
        optimistic = self.run_optimistic()
        merged = self.changes.merged()
        if not merged:
            logger.warning("no change merged; nothing to validate")
            return self._outcome(optimistic, nothing_merged=True)

        combined = self.run_combined(optimistic, merged)
        if combined.state.passed:
            return self._outcome(combined.state)

        isolation = self.run_isolation(combined)
        return self._outcome(isolation)

    def run_optimistic(self) -> OrchestratorState:
        """Phase 1: merge every change in order, deferring all validation."""
        self.changes.reset_pass()
        tip = self._guardian.reset_scratch_branch()
        state = OrchestratorState(phase=Phase.OPTIMISTIC, base=tip, tip=tip)
        self._observer.phase_started(Phase.OPTIMISTIC, self.changes)

        for record in self.changes:
            self._token.raise_if_cancelled()
            with correlation_scope(change_id=record.change_id, phase=Phase.OPTIMISTIC.value):
                self._merge(record, state)
        return state

    def run_combined(self, state: OrchestratorState, merged: tuple[str, ...]) -> _CombinedResult:
        """Phase 2: validate every merged change together, once."""
        state.phase = Phase.COMBINED
        self._observer.phase_started(Phase.COMBINED, self.changes)
        self._token.raise_if_cancelled()

        with correlation_scope(phase=Phase.COMBINED.value):
            verdict = self._runner.validate(COMBINED_ARTIFACT_KEY)
            state.artifact = verdict.artifact
            state.passed = verdict.passed
            if not verdict.passed:
                self._guardian.mark_failed(COMBINED_ARTIFACT_KEY)
                logger.info(
                    "combined validation failed; isolating faults",
                    extra={"failed_stage": str(verdict.failed_stage)},
                )
                return _CombinedResult(state=state, verdict=verdict, merged=merged)

            for record in self.changes:
                if record.status is ChangeStatus.MERGED:
                    record.advance(ChangeStatus.TEST_PASSED)
                    self._observer.change_updated(record)

            install = self._runner.install(COMBINED_ARTIFACT_KEY)
            if install is not None:
                status = (
                    ChangeStatus.INSTALL_PASSED if install.passed else ChangeStatus.INSTALL_FAILED
                )
                for record in self.changes:
                    if record.status is ChangeStatus.TEST_PASSED:
                        record.advance(status)
                        self._observer.change_updated(record)
        return _CombinedResult(state=state, verdict=verdict, merged=merged)

    def run_isolation(self, combined: _CombinedResult) -> OrchestratorState:
        """Phase 3: re-merge from the original commit, validating after every merge.

        Changes that failed to merge in Phase 1 keep their status and are not
        attempted again.
        """
        candidates = set(combined.merged)
        self.changes.reset_pass(only=candidates)
        tip = self._guardian.reset_scratch_branch()
        state = OrchestratorState(phase=Phase.ISOLATION, base=tip, tip=tip, passed=True)
        self._observer.phase_started(Phase.ISOLATION, self.changes)

        for record in self.changes:
            if record.change_id not in candidates:
                continue
            self._token.raise_if_cancelled()
            with correlation_scope(change_id=record.change_id, phase=Phase.ISOLATION.value):
                if not self._merge(record, state):
                    continue
                if self._reuses_combined_verdict(state, combined):
                    self._reject_from_combined(record, state)
                    continue
                self._validate(record, state)

        if state.test_failure_seen:
            state.passed = False
        return state

    def _reuses_combined_verdict(self, state: OrchestratorState, combined: _CombinedResult) -> bool:
        # Only the final candidate can complete the Phase 1 sequence, and only
        # while nothing has been dropped.
        if state.test_failure_seen:
            return False
        return tuple(state.accepted) == combined.merged

    def _merge(self, record: ChangeRecord, state: OrchestratorState) -> bool:
        self._observer.change_in_flight(record)
        outcome = self._integrator.integrate(record.change, state.tip)
        if not outcome.merged:
            record.advance(ChangeStatus.MERGE_FAILED)
            record.detail = outcome.detail
            self._observer.change_updated(record)
            return False
        record.advance(ChangeStatus.MERGED)
        record.commit = outcome.tip
        state.record_merge(record.change_id, outcome.tip)
        self._observer.change_updated(record)
        return True

    def _validate(self, record: ChangeRecord, state: OrchestratorState) -> None:
        verdict = self._runner.validate(record.change_id)
        record.artifact = verdict.artifact
        if not verdict.passed:
            record.failed_stage = str(verdict.failed_stage) if verdict.failed_stage else None
            self._drop(record, state)
            return

        record.advance(ChangeStatus.TEST_PASSED)
        self._observer.change_updated(record)
        install = self._runner.install(record.change_id)
        if install is not None:
            record.advance(
                ChangeStatus.INSTALL_PASSED if install.passed else ChangeStatus.INSTALL_FAILED
            )
            self._observer.change_updated(record)

    def _reject_from_combined(self, record: ChangeRecord, state: OrchestratorState) -> None:
        logger.info("last change reproduces the failing combined state; not re-validating")
        record.artifact = self._guardian.artifacts.copy(COMBINED_ARTIFACT_KEY, record.change_id)
        record.failed_stage = "combined"
        self._drop(record, state)

    def _drop(self, record: ChangeRecord, state: OrchestratorState) -> None:
        record.advance(ChangeStatus.TEST_FAILED)
        self._guardian.mark_failed(record.change_id)
        new_tip = self._git.reset_hard(1)
        state.drop_last(record.change_id, new_tip)
        state.test_failure_seen = True
        logger.info("dropped failing change", extra={"tip": new_tip})
        self._observer.change_updated(record)

    def _outcome(self, state: OrchestratorState, *, nothing_merged: bool = False) -> RunOutcome:
        artifacts: dict[str, Path] = {}
        merge_details: dict[str, str] = {}
        failed_stages: dict[str, str] = {}
        for record in self.changes:
            if record.status is ChangeStatus.MERGE_FAILED:
                merge_details[record.change_id] = record.detail or "merge failed"
            elif record.status is ChangeStatus.TEST_FAILED:
                failed_stages[record.change_id] = record.failed_stage or "validation"
                if record.artifact is not None:
                    artifacts[record.change_id] = record.artifact

        accepted = self.changes.accepted()
        test_failed = self.changes.test_failed()
        merge_failed = self.changes.merge_failed()
        passed = not nothing_merged and not merge_failed and not test_failed
        return RunOutcome(
            passed=passed,
            concluded_in=state.phase,
            accepted=accepted,
            merge_failed=merge_failed,
            test_failed=test_failed,
            install_failed=self.changes.install_failed(),
            nothing_merged=nothing_merged,
            artifacts=artifacts,
            merge_details=merge_details,
            failed_stages=failed_stages,
        )


__all__ = ["NullObserver", "Orchestrator", "PreconditionError", "RunObserver"]
