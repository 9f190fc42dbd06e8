"""Deterministic git CLI wrapper implementing the version-control contract of a run."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_BRANCH_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._/-]+$")
_FORBIDDEN_REF_CHARS: Final[tuple[str, ...]] = (" ", "\t", "\r", "\n", ":", "~", "^", "?", "*")


class GitEngineError(RuntimeError):
    """Any failure reported by ``GitEngine``."""


class SanitizationError(GitEngineError):
    """Raised when a branch name or ref is unsafe to pass to git."""


class GitCommandError(GitEngineError):
    """A git invocation exited non-zero; keeps its argv, status and output."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"{' '.join(command)} exited with status {returncode}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one git invocation."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


@dataclass(frozen=True, slots=True)
class MergeAttempt:
    """Result of a squash merge attempt; ``clean`` is False on conflict or non-fast-forward."""

    clean: bool
    output: str


class GitEngine:
    """Wrapper around the git CLI for the checked-out repository of a run."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._env_overrides = dict(env_overrides or {})

    def ensure_repository(self) -> Path:
        """Return the worktree top-level directory, failing outside a git repository."""
        try:
            top = self._run_git(["rev-parse", "--show-toplevel"]).stdout.strip()
        except GitCommandError as exc:
            raise GitEngineError(f"not a git repository: {self.repo_path}") from exc
        return Path(top)

    def current_reference(self) -> str:
        """Return the checked-out branch name, or the commit SHA when HEAD is detached."""
        symbolic = self._run_git(["symbolic-ref", "--quiet", "--short", "HEAD"], check=False)
        if symbolic.returncode == 0 and symbolic.stdout.strip():
            return symbolic.stdout.strip()
        return self.head()

    def head(self) -> str:
        return self.rev_parse("HEAD")

    def rev_parse(self, ref: str) -> str:
        return self._run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"]).stdout.strip()

    def working_tree_is_clean(self) -> bool:
        """True when no tracked file is modified or staged. Untracked files are ignored."""
        output = self._run_git(["status", "--porcelain", "--untracked-files=no"]).stdout
        return not output.strip()

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True when ``descendant`` contains ``ancestor``, so a fast-forward is possible."""
        result = self._run_git(["merge-base", "--is-ancestor", ancestor, descendant], check=False)
        return result.returncode == 0

    def branch_exists(self, name: str) -> bool:
        ref = f"refs/heads/{name}"
        return self._run_git(["show-ref", "--verify", "--quiet", ref], check=False).returncode == 0

    def create_and_checkout_branch(self, name: str, start: str) -> str:
        """Create (or reset) ``name`` at ``start`` and check it out; returns the new head."""
        branch = self._sanitize_branch_name(name)
        self._run_git(["checkout", "--quiet", "--force", "-B", branch, start])
        return self.head()

    def fetch(self, remote: str, ref: str) -> CommandResult:
        """Fetch ``ref`` from ``remote`` into ``FETCH_HEAD``."""
        safe_ref = self._sanitize_ref(ref)
        return self._run_git(["fetch", "--quiet", "--no-tags", remote, safe_ref])

    def squash_merge(self, ref: str = "FETCH_HEAD", *, ff_only: bool = True) -> MergeAttempt:
        """Squash ``ref`` into the index and worktree without committing."""
        args = ["merge", "--squash", "--no-commit"]
        if ff_only:
            args.append("--ff-only")
        args.append(ref)
        result = self._run_git(args, check=False)
        return MergeAttempt(clean=result.returncode == 0, output=result.output)

    def commit(self, message: str, *, trailers: Sequence[str] = ()) -> str:
        """Commit the index with ``message`` and return the new head SHA."""
        title = message.strip()
        if not title:
            raise GitEngineError("refusing to commit with an empty message")
        args = ["commit", "--quiet", "--no-verify", "--no-gpg-sign", "--allow-empty", "-m", title]
        if trailers:
            args.extend(["-m", "\n".join(trailers)])
        self._run_git(args)
        return self.head()

    def abort_in_progress_merge(self) -> None:
        """Drop any merge state left in the index and worktree; safe when none exists."""
        self._run_git(["merge", "--abort"], check=False)
        self._run_git(["reset", "--quiet", "--merge"], check=False)

    def reset_hard(self, offset: int = 0) -> str:
        """Hard-reset the checked-out branch to ``HEAD~offset`` and return the new head."""
        if offset < 0:
            raise GitEngineError("reset offset must be >= 0")
        self._run_git(["reset", "--quiet", "--hard", f"HEAD~{offset}"])
        return self.head()

    def reset_hard_to(self, commit_sha: str) -> str:
        self._run_git(["reset", "--quiet", "--hard", commit_sha])
        return self.head()

    def checkout(self, ref: str, *, force: bool = False) -> None:
        args = ["checkout", "--quiet"]
        if force:
            args.append("--force")
        args.append(ref)
        self._run_git(args)

    def delete_branch(self, name: str) -> bool:
        """Delete ``name`` if it exists; returns whether a branch was removed."""
        if not self.branch_exists(name):
            return False
        self._run_git(["branch", "--quiet", "-D", name])
        return True

    def _sanitize_branch_name(self, name: str) -> str:
        value = name.strip()
        if not value:
            raise SanitizationError("branch name cannot be empty.")
        if value.startswith("-") or value.startswith("/") or value.endswith("/"):
            raise SanitizationError(f"branch name is malformed: {name!r}")
        if ".." in value or value.endswith(".lock"):
            raise SanitizationError(f"branch name is malformed: {name!r}")
        if not _BRANCH_NAME_RE.fullmatch(value):
            raise SanitizationError(f"branch name contains unsupported characters: {name!r}")
        return value

    def _sanitize_ref(self, ref: str) -> str:
        value = ref.strip()
        if not value:
            raise SanitizationError("ref cannot be empty.")
        if value.startswith("-"):
            raise SanitizationError(f"ref cannot start with '-': {ref!r}")
        if any(ch in value for ch in _FORBIDDEN_REF_CHARS) or ".." in value:
            raise SanitizationError(f"ref contains forbidden characters: {ref!r}")
        return value

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> CommandResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_MERGE_AUTOEDIT", "no")
        env.update(self._env_overrides)

        completed = subprocess.run(
            command,
            cwd=self.repo_path,
            env=env,
            text=True,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            check=False,
        )

        result = CommandResult(
            command=command,
            cwd=self.repo_path.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "MergeAttempt",
    "SanitizationError",
]
