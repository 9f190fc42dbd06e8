"""
prbatch — status reporter

Purpose
- Render run progress and the final summary from the change-set model.

Normative behavior
- Presentation only: the reporter reads records and outcomes, and nothing it
  does feeds back into orchestration.
- Glyphs live here, keyed by ``ChangeStatus``; the domain never sees them.
- The progress line is a single continuously overwritten line (``rich.live``)
  and is only drawn on a terminal.
- Failing artifacts must be paged from ``run_finished``: the guardian removes
  the ephemeral artifact directory right after it.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Final

from rich.console import Console
from rich.live import Live
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from prbatch.domain import ChangeStatus

if TYPE_CHECKING:
    from prbatch.control_plane.guardian import ResourceGuardian
    from prbatch.domain import ChangeRecord, ChangeSet, Phase, RunOutcome

# (merge, test, install) per status. "." not reached, "+" passed, "x" failed.
STATUS_GLYPHS: Final[dict[ChangeStatus, tuple[str, str, str]]] = {
    ChangeStatus.PENDING: (".", ".", "."),
    ChangeStatus.MERGE_FAILED: ("x", ".", "."),
    ChangeStatus.MERGED: ("+", ".", "."),
    ChangeStatus.TEST_PASSED: ("+", "+", "."),
    ChangeStatus.TEST_FAILED: ("+", "x", "."),
    ChangeStatus.INSTALL_PASSED: ("+", "+", "+"),
    ChangeStatus.INSTALL_FAILED: ("+", "+", "x"),
}

_GLYPH_STYLES: Final[dict[str, str]] = {".": "dim", "+": "green", "x": "bold red"}

ConfirmFn = Callable[[str], bool]


def glyphs_for(status: ChangeStatus) -> str:
    return "".join(STATUS_GLYPHS[status])


class StatusReporter:
    """Run observer that draws a live progress line and a final summary."""

    def __init__(
        self,
        console: Console | None = None,
        *,
        live: bool | None = None,
        page_failures: bool = False,
        confirm: ConfirmFn | None = None,
    ) -> None:
        self.console = console or Console(stderr=True)
        self._live_enabled = self.console.is_terminal if live is None else live
        self._page_failures = page_failures
        self._confirm = confirm or _confirm_prompt
        self._live: Live | None = None
        self._phase: Phase | None = None
        self._records: tuple[ChangeRecord, ...] = ()
        self._in_flight: str | None = None

    @property
    def in_flight(self) -> str | None:
        return self._in_flight

    def phase_started(self, phase: Phase, changes: ChangeSet) -> None:
        self._phase = phase
        self._records = changes.records
        self._in_flight = None
        if self._live_enabled and self._live is None:
            self._live = Live(
                self._render_progress(),
                console=self.console,
                auto_refresh=False,
                transient=True,
            )
            self._live.start()
        self._refresh()

    def change_in_flight(self, record: ChangeRecord | None) -> None:
        self._in_flight = record.change_id if record is not None else None
        self._refresh()

    def change_updated(self, record: ChangeRecord) -> None:
        self._refresh()

    def run_finished(self, outcome: RunOutcome, guardian: ResourceGuardian) -> None:
        self.close()
        self.console.print(self.render_summary(outcome))
        if guardian.persist_dir is not None and outcome.artifacts:
            self.console.print(f"failure logs will be saved to {guardian.persist_dir}")
        elif self._page_failures and outcome.artifacts:
            self.page_artifacts(outcome)

    def close(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    def progress_line(self) -> str:
        """Plain-text form of the progress line."""
        return self._render_progress().plain

    def render_summary(self, outcome: RunOutcome) -> Table:
        table = Table(title="prbatch summary", show_header=True, header_style="bold")
        table.add_column("Result", style="bold")
        table.add_column("Changes")
        table.add_column("Details")
        table.add_row(Text("accepted", style="green"), _join_ids(outcome.accepted), "")
        table.add_row(
            Text("merge failed", style="red"),
            _join_ids(outcome.merge_failed),
            _describe(outcome.merge_failed, outcome.merge_details),
        )
        table.add_row(
            Text("test failed", style="red"),
            _join_ids(outcome.test_failed),
            _describe(outcome.test_failed, _stage_notes(outcome.failed_stages)),
        )
        if outcome.install_failed:
            table.add_row(
                Text("install failed", style="yellow"), _join_ids(outcome.install_failed), ""
            )
        if outcome.nothing_merged:
            table.caption = "no change could be merged"
        return table

    def page_artifacts(self, outcome: RunOutcome) -> None:
        for change_id, path in outcome.artifacts.items():
            if not path.exists():
                continue
            if not self._confirm(f"View the failure log of #{change_id}?"):
                continue
            with self.console.pager():
                self.console.print(path.read_text(encoding="utf-8", errors="replace"), markup=False)

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render_progress(), refresh=True)

    def _render_progress(self) -> Text:
        line = Text()
        if self._phase is not None:
            line.append(f"[{self._phase}] ", style="bold")
        for record in self._records:
            marker = ">" if record.change_id == self._in_flight else " "
            line.append(f"{marker}#{record.change_id} ")
            for glyph in STATUS_GLYPHS[record.status]:
                line.append(glyph, style=_GLYPH_STYLES[glyph])
            line.append(" ")
        line.rstrip()
        return line


def summary_payload(
    outcome: RunOutcome, *, artifact_dir: Path | None = None
) -> dict[str, object]:
    """JSON-serialisable summary of ``outcome``.

    Artifact paths are only reported when they survive the run, i.e. when
    ``artifact_dir`` names the directory they were persisted to.
    """
    artifacts: dict[str, str] = {}
    if artifact_dir is not None:
        artifacts = {
            change_id: str(Path(artifact_dir) / path.name)
            for change_id, path in outcome.artifacts.items()
        }
    return {
        "passed": outcome.passed,
        "concluded_in": str(outcome.concluded_in),
        "nothing_merged": outcome.nothing_merged,
        "accepted": list(outcome.accepted),
        "merge_failed": list(outcome.merge_failed),
        "test_failed": list(outcome.test_failed),
        "install_failed": list(outcome.install_failed),
        "merge_details": dict(outcome.merge_details),
        "failed_stages": dict(outcome.failed_stages),
        "artifacts": artifacts,
    }


def _join_ids(change_ids: tuple[str, ...]) -> str:
    if not change_ids:
        return "-"
    return " ".join(f"#{change_id}" for change_id in change_ids)


def _stage_notes(failed_stages: dict[str, str]) -> dict[str, str]:
    notes: dict[str, str] = {}
    for change_id, stage in failed_stages.items():
        if stage == "combined":
            notes[change_id] = "failed in the combined run (last change, not re-validated)"
        else:
            notes[change_id] = f"{stage} stage failed"
    return notes


def _describe(change_ids: tuple[str, ...], notes: dict[str, str]) -> Text:
    lines = [f"#{change_id}: {notes[change_id]}" for change_id in change_ids if change_id in notes]
    return Text("\n".join(lines))


def _confirm_prompt(question: str) -> bool:
    return Confirm.ask(question, default=False)


__all__ = ["STATUS_GLYPHS", "StatusReporter", "glyphs_for", "summary_payload"]
