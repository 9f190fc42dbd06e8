"""
prbatch — change-set domain model.

Purpose
- Represent the ordered batch of proposed changes and their per-change status.
- Carry the explicit run state threaded through the orchestration phases.

Normative behavior
- Batch order is caller-specified and meaningful: changes are applied
  cumulatively, each on top of every previously accepted change.
- Status transitions are monotonic within one pass. A pass starts by resetting
  every record to ``pending``; any other backwards move is rejected.
- Install results are observational: a change stays accepted whatever its
  install outcome.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Iterator, Sequence

_CHANGE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._/@+-]+$")


class ChangeSetError(ValueError):
    """Raised when a batch of change identities is malformed."""


class StatusTransitionError(RuntimeError):
    """Raised when a status update would regress within one pass."""


class ChangeStatus(StrEnum):
    """Per-change lifecycle status."""

    PENDING = "pending"
    MERGE_FAILED = "merge_failed"
    MERGED = "merged"
    TEST_PASSED = "test_passed"
    TEST_FAILED = "test_failed"
    INSTALL_PASSED = "install_passed"
    INSTALL_FAILED = "install_failed"


_TRANSITIONS: Final[dict[ChangeStatus, frozenset[ChangeStatus]]] = {
    ChangeStatus.PENDING: frozenset({ChangeStatus.MERGE_FAILED, ChangeStatus.MERGED}),
    ChangeStatus.MERGED: frozenset({ChangeStatus.TEST_PASSED, ChangeStatus.TEST_FAILED}),
    ChangeStatus.TEST_PASSED: frozenset(
        {ChangeStatus.INSTALL_PASSED, ChangeStatus.INSTALL_FAILED}
    ),
    ChangeStatus.MERGE_FAILED: frozenset(),
    ChangeStatus.TEST_FAILED: frozenset(),
    ChangeStatus.INSTALL_PASSED: frozenset(),
    ChangeStatus.INSTALL_FAILED: frozenset(),
}

ACCEPTED_STATUSES: Final[frozenset[ChangeStatus]] = frozenset(
    {ChangeStatus.TEST_PASSED, ChangeStatus.INSTALL_PASSED, ChangeStatus.INSTALL_FAILED}
)


class Phase(StrEnum):
    """Orchestration phase identifiers."""

    PRECONDITION = "precondition"
    OPTIMISTIC = "optimistic"
    COMBINED = "combined"
    ISOLATION = "isolation"


@dataclass(frozen=True, slots=True)
class Change:
    """One proposed change: an opaque identity plus the remote ref it is fetched from."""

    change_id: str
    ref: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "change_id", normalize_change_id(self.change_id))
        ref = self.ref.strip()
        if not ref:
            raise ChangeSetError(f"change {self.change_id}: ref must not be empty")
        object.__setattr__(self, "ref", ref)

    @classmethod
    def from_template(cls, change_id: str, ref_template: str) -> Change:
        normalized = normalize_change_id(change_id)
        try:
            ref = ref_template.format(change=normalized)
        except (KeyError, IndexError, ValueError) as exc:
            raise ChangeSetError(
                f"ref template {ref_template!r} must only use the {{change}} placeholder"
            ) from exc
        return cls(change_id=normalized, ref=ref)


@dataclass(slots=True)
class ChangeRecord:
    """Mutable per-change status within the current pass."""

    change: Change
    status: ChangeStatus = ChangeStatus.PENDING
    commit: str | None = None
    failed_stage: str | None = None
    artifact: Path | None = None
    detail: str | None = None

    @property
    def change_id(self) -> str:
        return self.change.change_id

    @property
    def accepted(self) -> bool:
        return self.status in ACCEPTED_STATUSES

    @property
    def install_attempted(self) -> bool:
        return self.status in {ChangeStatus.INSTALL_PASSED, ChangeStatus.INSTALL_FAILED}

    def advance(self, status: ChangeStatus) -> None:
        allowed = _TRANSITIONS[self.status]
        if status not in allowed:
            raise StatusTransitionError(
                f"change {self.change_id}: illegal transition {self.status} -> {status}"
            )
        self.status = status

    def reset(self) -> None:
        self.status = ChangeStatus.PENDING
        self.commit = None
        self.failed_stage = None
        self.artifact = None
        self.detail = None


class ChangeSet:
    """Ordered batch of changes with their per-pass records."""

    def __init__(self, changes: Iterable[Change]) -> None:
        records: list[ChangeRecord] = []
        seen: set[str] = set()
        for change in changes:
            if change.change_id in seen:
                raise ChangeSetError(f"duplicate change in batch: {change.change_id}")
            seen.add(change.change_id)
            records.append(ChangeRecord(change=change))
        self._records = records

    @classmethod
    def from_ids(cls, change_ids: Sequence[str], *, ref_template: str) -> ChangeSet:
        return cls(Change.from_template(item, ref_template) for item in change_ids)

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, change_id: str) -> ChangeRecord:
        for record in self._records:
            if record.change_id == change_id:
                return record
        raise KeyError(change_id)

    @property
    def records(self) -> tuple[ChangeRecord, ...]:
        return tuple(self._records)

    @property
    def changes(self) -> tuple[Change, ...]:
        return tuple(record.change for record in self._records)

    def reset_pass(self, *, only: Collection[str] | None = None) -> None:
        """Start a new pass. With ``only``, records outside it keep their status."""
        for record in self._records:
            if only is None or record.change_id in only:
                record.reset()

    def with_status(self, *statuses: ChangeStatus) -> tuple[str, ...]:
        wanted = set(statuses)
        return tuple(record.change_id for record in self._records if record.status in wanted)

    def accepted(self) -> tuple[str, ...]:
        return tuple(record.change_id for record in self._records if record.accepted)

    def merge_failed(self) -> tuple[str, ...]:
        return self.with_status(ChangeStatus.MERGE_FAILED)

    def test_failed(self) -> tuple[str, ...]:
        return self.with_status(ChangeStatus.TEST_FAILED)

    def install_failed(self) -> tuple[str, ...]:
        return self.with_status(ChangeStatus.INSTALL_FAILED)

    def merged(self) -> tuple[str, ...]:
        """Identities whose merge succeeded in the current pass, whatever happened next."""
        return tuple(
            record.change_id
            for record in self._records
            if record.status not in {ChangeStatus.PENDING, ChangeStatus.MERGE_FAILED}
        )


@dataclass(slots=True)
class OrchestratorState:
    """Integration state owned by one phase of one run.

    ``tip`` is the scratch branch head, ``accepted`` the identities whose
    commits are currently on the branch in application order.
    """

    phase: Phase
    base: str
    tip: str
    accepted: list[str] = field(default_factory=list)
    test_failure_seen: bool = False
    passed: bool | None = None
    artifact: Path | None = None

    def record_merge(self, change_id: str, new_tip: str) -> None:
        self.tip = new_tip
        self.accepted.append(change_id)

    def drop_last(self, change_id: str, new_tip: str) -> None:
        if not self.accepted or self.accepted[-1] != change_id:
            raise StatusTransitionError(
                f"cannot drop {change_id}: it is not the most recent accepted change"
            )
        self.accepted.pop()
        self.tip = new_tip


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Final classification of one run.

    ``merge_details`` holds the reason each merge-failed change was rejected;
    ``failed_stages`` names the stage each test-failed change failed at, or
    ``"combined"`` when the combined run's verdict was reused.
    """

    passed: bool
    concluded_in: Phase
    accepted: tuple[str, ...]
    merge_failed: tuple[str, ...]
    test_failed: tuple[str, ...]
    install_failed: tuple[str, ...] = ()
    nothing_merged: bool = False
    artifacts: dict[str, Path] = field(default_factory=dict)
    merge_details: dict[str, str] = field(default_factory=dict)
    failed_stages: dict[str, str] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return self.nothing_merged or bool(self.merge_failed) or bool(self.test_failed)


def normalize_change_id(value: str) -> str:
    """Validate and normalize a change identity."""

    if not isinstance(value, str):
        raise ChangeSetError(f"change identity must be a string, got {type(value).__name__}")
    normalized = value.strip().lstrip("#")
    if not normalized:
        raise ChangeSetError("change identity must not be empty")
    if normalized.startswith("-"):
        raise ChangeSetError(f"change identity cannot start with '-': {value!r}")
    if ".." in normalized:
        raise ChangeSetError(f"change identity cannot contain '..': {value!r}")
    if not _CHANGE_ID_RE.fullmatch(normalized):
        raise ChangeSetError(f"change identity contains unsupported characters: {value!r}")
    return normalized


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
