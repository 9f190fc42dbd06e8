"""
prbatch — end-to-end batch runs over real repositories

Purpose
- Drive ``run_cli`` against a clone whose remote publishes change refs, with a
  scripted build tool standing in for make.
- Verify the accepted/rejected classification, the build invocations of each
  phase, and that the clone is left exactly as it was found.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from prbatch.main import cli_entrypoint
from prbatch.ui.cli import run_cli

if TYPE_CHECKING:
    from pathlib import Path

    from conftest import BuildTool, GitSandbox

pytestmark = pytest.mark.integration


def _run(
    work: Path,
    tool: BuildTool,
    capsys: pytest.CaptureFixture[str],
    *args: str,
    ff_only: bool = False,
) -> tuple[int, dict[str, object]]:
    merge_flags = [] if ff_only else ["--no-ff-only"]
    code = run_cli(
        [
            "--repo-root",
            str(work),
            *merge_flags,
            "--build-command",
            tool.command,
            "--json",
            *args,
        ]
    )
    out = capsys.readouterr().out
    return code, json.loads(out)


def _assert_untouched(sandbox: GitSandbox, work: Path, head: str) -> None:
    assert sandbox.current_branch(work) == "main"
    assert sandbox.head(work) == head
    assert "prbatch/integration" not in sandbox.branches(work)
    assert sandbox.git(work, "status", "--porcelain", "--untracked-files=no").stdout == ""


def _publish_batch(sandbox: GitSandbox) -> Path:
    origin = sandbox.init_repo()
    sandbox.publish_change(origin, "1", {"one.txt": "1\n"})
    sandbox.publish_change(origin, "2", {"two.txt": "2\n", "BROKEN": "yes\n"})
    sandbox.publish_change(origin, "3", {"three.txt": "3\n"})
    return sandbox.clone(origin)


def test_failing_change_is_singled_out(
    git_sandbox: GitSandbox,
    build_tool: BuildTool,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    work = _publish_batch(git_sandbox)
    head = git_sandbox.head(work)
    failures = tmp_path / "failures"

    code, payload = _run(
        work, build_tool, capsys, "--fail-exit", "-l", str(failures), "1", "2", "3"
    )

    assert code == 1
    assert payload["accepted"] == ["1", "3"]
    assert payload["test_failed"] == ["2"]
    assert payload["merge_failed"] == []
    assert payload["failed_stages"] == {"2": "test"}
    assert payload["concluded_in"] == "isolation"
    assert payload["artifacts"] == {"2": str(failures.resolve() / "change-2.log")}
    assert "tests failed: BROKEN is present" in (failures / "change-2.log").read_text(encoding="utf-8")
    assert (failures / "combined.log").exists()
    assert build_tool.calls() == ["clean", "check"] * 4
    _assert_untouched(git_sandbox, work, head)
    assert not (work / "BROKEN").exists()


def test_passing_batch_runs_install_once(
    git_sandbox: GitSandbox, build_tool: BuildTool, capsys: pytest.CaptureFixture[str]
) -> None:
    origin = git_sandbox.init_repo()
    git_sandbox.publish_change(origin, "10", {"a.txt": "a\n"})
    git_sandbox.publish_change(origin, "11", {"b.txt": "b\n"})
    work = git_sandbox.clone(origin)
    head = git_sandbox.head(work)

    code, payload = _run(
        work, build_tool, capsys, "--fail-exit", "--install-target", "install", "10", "11"
    )

    assert code == 0
    assert payload["passed"] is True
    assert payload["concluded_in"] == "combined"
    assert payload["accepted"] == ["10", "11"]
    assert payload["install_failed"] == []
    assert build_tool.calls() == ["clean", "check", "install"]
    _assert_untouched(git_sandbox, work, head)


def test_conflicting_change_is_reported_as_merge_failure(
    git_sandbox: GitSandbox, build_tool: BuildTool, capsys: pytest.CaptureFixture[str]
) -> None:
    origin = git_sandbox.init_repo(files={"shared.txt": "base\n"})
    git_sandbox.publish_change(origin, "1", {"shared.txt": "one\n"})
    git_sandbox.publish_change(origin, "2", {"shared.txt": "two\n"})
    work = git_sandbox.clone(origin)
    head = git_sandbox.head(work)

    code, payload = _run(work, build_tool, capsys, "1", "2")

    assert code == 0
    assert payload["accepted"] == ["1"]
    assert payload["merge_failed"] == ["2"]
    assert payload["passed"] is False
    assert payload["merge_details"]["2"].startswith("CONFLICT")
    assert build_tool.calls() == ["clean", "check"]
    _assert_untouched(git_sandbox, work, head)


def test_default_fast_forward_only_merging_accepts_only_the_first_independent_change(
    git_sandbox: GitSandbox, build_tool: BuildTool, capsys: pytest.CaptureFixture[str]
) -> None:
    origin = git_sandbox.init_repo()
    git_sandbox.publish_change(origin, "1", {"one.txt": "1\n"})
    git_sandbox.publish_change(origin, "2", {"two.txt": "2\n"})
    work = git_sandbox.clone(origin)
    head = git_sandbox.head(work)

    code, payload = _run(work, build_tool, capsys, "1", "2", ff_only=True)

    # Change 2 is based on main, not on the squash commit of change 1.
    assert code == 0
    assert payload["accepted"] == ["1"]
    assert payload["merge_failed"] == ["2"]
    assert payload["concluded_in"] == "combined"
    assert "not a fast-forward" in payload["merge_details"]["2"]
    assert "--no-ff-only" in payload["merge_details"]["2"]
    assert build_tool.calls() == ["clean", "check"]
    _assert_untouched(git_sandbox, work, head)


def test_summary_table_names_the_merge_failure_reason(
    git_sandbox: GitSandbox, build_tool: BuildTool, capsys: pytest.CaptureFixture[str]
) -> None:
    origin = git_sandbox.init_repo()
    git_sandbox.publish_change(origin, "1", {"one.txt": "1\n"})
    git_sandbox.publish_change(origin, "2", {"two.txt": "2\n"})
    work = git_sandbox.clone(origin)

    code = run_cli(
        ["--repo-root", str(work), "--build-command", build_tool.command, "1", "2"]
    )

    err = capsys.readouterr().err
    assert code == 0
    assert "#2: not a fast-forward" in " ".join(err.split())


def test_run_with_nothing_mergeable_skips_validation(
    git_sandbox: GitSandbox, build_tool: BuildTool, capsys: pytest.CaptureFixture[str]
) -> None:
    origin = git_sandbox.init_repo()
    work = git_sandbox.clone(origin)

    code, payload = _run(work, build_tool, capsys, "--fail-exit", "404")

    assert code == 1
    assert payload["nothing_merged"] is True
    assert payload["merge_failed"] == ["404"]
    assert payload["merge_details"]["404"].startswith("fetch of pull/404/head failed")
    assert build_tool.calls() == []


def test_dirty_checkout_is_refused_and_left_alone(
    git_sandbox: GitSandbox, build_tool: BuildTool
) -> None:
    work = _publish_batch(git_sandbox)
    (work / "README.md").write_text("local edit\n", encoding="utf-8")

    code = cli_entrypoint(
        ["--repo-root", str(work), "--build-command", build_tool.command, "1"]
    )

    assert code == 2
    assert (work / "README.md").read_text(encoding="utf-8") == "local edit\n"
    assert git_sandbox.current_branch(work) == "main"
    assert "prbatch/integration" not in git_sandbox.branches(work)
    assert build_tool.calls() == []
