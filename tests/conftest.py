"""Shared fixtures: isolated git sandboxes and a scripted build tool."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest


def _run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = (
            f"git command failed: git {' '.join(args)}\n"
            f"stdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        )
        raise AssertionError(msg)
    return completed


class GitSandbox:
    """Builds throwaway repositories under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def git(self, cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run_git(cwd, *args, check=check)

    def init_repo(self, name: str = "origin", files: dict[str, str] | None = None) -> Path:
        repo = self.root / name
        repo.mkdir(parents=True)
        self.git(repo, "init", "--quiet")
        self.git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
        self.commit_files(repo, files or {"README.md": "base\n"}, "initial commit")
        return repo

    def commit_files(self, repo: Path, files: dict[str, str], message: str) -> str:
        for rel_path, content in files.items():
            path = repo / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        self.git(repo, "add", "--all")
        self.git(repo, "commit", "--quiet", "-m", message)
        return self.head(repo)

    def publish_change(
        self,
        origin: Path,
        change_id: str,
        files: dict[str, str],
        *,
        base: str = "main",
    ) -> str:
        """Commit ``files`` on top of ``base`` and expose it as ``refs/pull/<id>/head``."""
        branch = self.current_branch(origin)
        self.git(origin, "checkout", "--quiet", "--detach", base)
        sha = self.commit_files(origin, files, f"change {change_id}")
        self.git(origin, "update-ref", f"refs/pull/{change_id}/head", sha)
        self.git(origin, "checkout", "--quiet", branch)
        return sha

    def clone(self, origin: Path, name: str = "work") -> Path:
        dest = self.root / name
        self.git(self.root, "clone", "--quiet", str(origin), str(dest))
        return dest

    def head(self, repo: Path, ref: str = "HEAD") -> str:
        return self.git(repo, "rev-parse", ref).stdout.strip()

    def current_branch(self, repo: Path) -> str:
        return self.git(repo, "rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def branches(self, repo: Path) -> set[str]:
        output = self.git(repo, "branch", "--format=%(refname:short)").stdout
        return {line.strip() for line in output.splitlines() if line.strip()}

    def subjects(self, repo: Path, ref: str = "HEAD") -> list[str]:
        output = self.git(repo, "log", "--format=%s", ref).stdout
        return [line for line in output.splitlines() if line.strip()]


@pytest.fixture
def git_sandbox(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GitSandbox:
    if shutil.which("git") is None:
        pytest.skip("git executable is required")

    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "prbatch tests")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "tests@example.invalid")

    sandbox_root = tmp_path / "sandbox"
    sandbox_root.mkdir()
    return GitSandbox(sandbox_root)


_BUILD_TOOL_SOURCE = """\
import pathlib
import sys

calls = pathlib.Path({calls!r})
target = sys.argv[-1] if len(sys.argv) > 1 else ""
with calls.open("a", encoding="utf-8") as handle:
    handle.write(" ".join(sys.argv[1:]) + "\\n")

print("building", target)
if target == "check" and pathlib.Path("BROKEN").exists():
    print("tests failed: BROKEN is present")
    sys.exit(1)
if target == "install" and pathlib.Path("NOINSTALL").exists():
    print("install refused")
    sys.exit(2)
sys.exit(0)
"""


@dataclass(frozen=True)
class BuildTool:
    """A fake build tool: ``check`` fails when the tree contains ``BROKEN``."""

    command: str
    calls_path: Path

    def calls(self) -> list[str]:
        if not self.calls_path.exists():
            return []
        return self.calls_path.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def build_tool(tmp_path: Path) -> BuildTool:
    tool_dir = tmp_path / "tool"
    tool_dir.mkdir()
    calls = tool_dir / "calls.txt"
    script = tool_dir / "build.py"
    script.write_text(textwrap.dedent(_BUILD_TOOL_SOURCE.format(calls=str(calls))), encoding="utf-8")
    return BuildTool(command=shlex.join([sys.executable, str(script)]), calls_path=calls)
