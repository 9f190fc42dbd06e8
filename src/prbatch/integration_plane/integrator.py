"""Integration engine: incorporate one change onto the current scratch tip."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from prbatch.constants import COMMIT_TRAILER_KEY
from prbatch.integration_plane.git_engine import GitCommandError, GitEngineError

if TYPE_CHECKING:
    from prbatch.domain import Change
    from prbatch.integration_plane.git_engine import GitEngine

logger = logging.getLogger(__name__)


class IntegrationStatus(StrEnum):
    MERGED = "merged"
    FETCH_FAILED = "fetch_failed"
    NOT_FAST_FORWARD = "not_fast_forward"
    CONFLICT = "conflict"


class IntegrationStateError(GitEngineError):
    """Raised when a failed attempt could not be reverted to the prior tip."""


@dataclass(frozen=True, slots=True)
class IntegrationOutcome:
    """Result of one ``integrate`` call.

    ``tip`` is the new head on success and the unchanged prior head on conflict.
    """

    change_id: str
    status: IntegrationStatus
    tip: str
    detail: str = ""

    @property
    def merged(self) -> bool:
        return self.status is IntegrationStatus.MERGED


class IntegrationEngine:
    """Fetch a change from the configured remote and squash it onto the checked-out tip."""

    def __init__(self, git: GitEngine, *, remote: str, ff_only: bool = True) -> None:
        self._git = git
        self.remote = remote
        self.ff_only = ff_only

    def integrate(self, change: Change, current_tip: str | None = None) -> IntegrationOutcome:
        before = current_tip if current_tip is not None else self._git.head()
        try:
            self._git.fetch(self.remote, change.ref)
        except GitCommandError as exc:
            logger.info("fetch failed for change %s", change.change_id, extra={"ref": change.ref})
            reason = f"fetch of {change.ref} failed: {_last_line(exc.stderr) or exc}"
            return self._revert(change, before, IntegrationStatus.FETCH_FAILED, reason)

        attempt = self._git.squash_merge("FETCH_HEAD", ff_only=self.ff_only)
        if not attempt.clean:
            if self.ff_only and not self._git.is_ancestor(before, "FETCH_HEAD"):
                return self._revert(
                    change,
                    before,
                    IntegrationStatus.NOT_FAST_FORWARD,
                    "not a fast-forward of the scratch branch (changes merged earlier in the "
                    "batch are missing from it); rerun with --no-ff-only to squash it anyway",
                )
            return self._revert(
                change, before, IntegrationStatus.CONFLICT, _conflict_summary(attempt.output)
            )

        try:
            new_tip = self._git.commit(
                f"Merge change #{change.change_id}",
                trailers=(f"{COMMIT_TRAILER_KEY}: {change.change_id}",),
            )
        except GitCommandError as exc:
            reason = f"commit failed: {_last_line(exc.stderr) or exc}"
            return self._revert(change, before, IntegrationStatus.CONFLICT, reason)

        logger.debug("merged change %s", change.change_id, extra={"tip": new_tip})
        return IntegrationOutcome(
            change_id=change.change_id,
            status=IntegrationStatus.MERGED,
            tip=new_tip,
        )

    def _revert(
        self, change: Change, before: str, status: IntegrationStatus, detail: str
    ) -> IntegrationOutcome:
        self._git.abort_in_progress_merge()
        restored = self._git.reset_hard_to(before)
        if restored != before:
            raise IntegrationStateError(
                f"change {change.change_id}: tip moved from {before} to {restored} after revert"
            )
        logger.info("change %s did not merge", change.change_id, extra={"detail": detail})
        return IntegrationOutcome(
            change_id=change.change_id,
            status=status,
            tip=before,
            detail=detail,
        )


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


def _conflict_summary(output: str) -> str:
    """One line naming the conflicting paths, from ``git merge`` output."""
    conflicts = [line.strip() for line in output.splitlines() if line.startswith("CONFLICT")]
    if conflicts:
        return "; ".join(conflicts)
    return _last_line(output) or "merge conflict"


__all__ = [
    "IntegrationEngine",
    "IntegrationOutcome",
    "IntegrationStateError",
    "IntegrationStatus",
]
