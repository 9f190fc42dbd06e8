"""Tests for the build-system collaborator."""

from __future__ import annotations

import sys
import threading
import time
from typing import TYPE_CHECKING

import psutil
import pytest

from prbatch.utils.concurrency import CancellationToken, RunInterrupted
from prbatch.verification_plane.build_system import (
    BuildSystem,
    build_flags,
    split_command,
    terminate_process_tree,
)

if TYPE_CHECKING:
    from pathlib import Path

_ECHO_ARGS = "import sys; print(' '.join(sys.argv[1:])); sys.exit(3 if 'bad' in sys.argv else 0)"


def test_build_flags_omit_zero_jobs() -> None:
    assert build_flags() == ()
    assert build_flags(jobs=0, args=("V=1",)) == ("V=1",)
    assert build_flags(jobs=4, args=("V=1", "CC=clang")) == ("-j4", "V=1", "CC=clang")


def test_split_command_handles_strings_and_sequences() -> None:
    assert split_command("make -s") == ("make", "-s")
    assert split_command(["ninja", " "]) == ("ninja",)
    with pytest.raises(ValueError):
        split_command("   ")


def test_argv_places_flags_before_target(tmp_path: Path) -> None:
    system = BuildSystem("make -s", tmp_path)
    assert system.argv_for("check", ("-j2",)) == ("make", "-s", "-j2", "check")
    assert system.argv_for(None, ()) == ("make", "-s")


def test_run_target_captures_combined_output_and_status(tmp_path: Path) -> None:
    system = BuildSystem([sys.executable, "-c", _ECHO_ARGS], tmp_path)

    ok = system.run_target("check", ("-j2",))
    assert ok.ok
    assert ok.output.strip() == "-j2 check"
    assert ok.argv[-1] == "check"

    failed = system.run_target("bad")
    assert not failed.ok
    assert failed.exit_code == 3


def test_stderr_is_merged_into_output(tmp_path: Path) -> None:
    script = "import sys; sys.stderr.write('to-stderr\\n'); print('to-stdout')"
    result = BuildSystem([sys.executable, "-c", script], tmp_path).run_target(None)

    assert "to-stderr" in result.output
    assert "to-stdout" in result.output


def test_missing_tool_is_reported_as_exit_127(tmp_path: Path) -> None:
    result = BuildSystem("prbatch-no-such-build-tool", tmp_path).run_target("check")

    assert result.exit_code == 127
    assert "failed to start" in result.output


def test_cancellation_terminates_the_running_target(tmp_path: Path) -> None:
    token = CancellationToken()
    system = BuildSystem(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        tmp_path,
        cancel_token=token,
    )
    timer = threading.Timer(0.3, token.cancel, args=("test cancel",))
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(RunInterrupted, match="test cancel"):
            system.run_target("check")
    finally:
        timer.cancel()

    assert time.monotonic() - started < 30


def test_terminate_process_tree_tolerates_missing_process(tmp_path: Path) -> None:
    proc = psutil.Popen([sys.executable, "-c", "pass"], cwd=tmp_path)
    proc.wait(timeout=30)

    terminate_process_tree(proc.pid, grace_seconds=0.1)
