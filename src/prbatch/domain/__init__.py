"""Change-set domain model: changes, statuses, and run state."""

from prbatch.domain.models import (
    ACCEPTED_STATUSES,
    Change,
    ChangeRecord,
    ChangeSet,
    ChangeSetError,
    ChangeStatus,
    OrchestratorState,
    Phase,
    RunOutcome,
    StatusTransitionError,
    normalize_change_id,
)

__all__ = [
    "ACCEPTED_STATUSES",
    "Change",
    "ChangeRecord",
    "ChangeSet",
    "ChangeSetError",
    "ChangeStatus",
    "OrchestratorState",
    "Phase",
    "RunOutcome",
    "StatusTransitionError",
    "normalize_change_id",
]
