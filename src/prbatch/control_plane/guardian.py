"""
prbatch — resource guardian

Purpose
- Own the scratch integration branch and the ephemeral artifact directory of
  one run, and restore the repository to its start-up state on every exit
  path: success, early termination, errors, and asynchronous interruption.

Normative behavior
- The original reference (branch name, or SHA when detached) and its commit
  are captured when the guard is entered. The scratch branch is always
  (re)created from that commit.
- ``cleanup`` is idempotent. Every step is attempted even when an earlier
  one failed; the first failure is re-raised as ``CleanupError`` afterwards.
- Repository steps only run once the guard has touched the repository, so a
  run that stops at its precondition check leaves the checkout untouched.
- Failing artifacts are relocated to ``persist_dir`` when one was requested;
  the ephemeral directory is always removed.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING

from prbatch.constants import ARTIFACT_DIR_PREFIX, DEFAULT_SCRATCH_BRANCH
from prbatch.integration_plane.git_engine import GitEngineError
from prbatch.utils.concurrency import CancellationToken, SignalScope, cancel_on_signals
from prbatch.verification_plane.artifacts import ArtifactStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from prbatch.integration_plane.git_engine import GitEngine

logger = logging.getLogger(__name__)


class CleanupError(RuntimeError):
    """Raised when at least one cleanup step failed."""

    def __init__(self, failures: list[tuple[str, BaseException]]) -> None:
        self.failures = tuple(failures)
        rendered = "; ".join(f"{step}: {exc}" for step, exc in failures)
        super().__init__(f"cleanup incomplete: {rendered}")


class ResourceGuardian:
    """Scoped owner of the scratch branch and artifact storage for one run."""

    def __init__(
        self,
        git: GitEngine,
        *,
        branch: str = DEFAULT_SCRATCH_BRANCH,
        persist_dir: Path | str | None = None,
        artifact_parent: Path | str | None = None,
        cancel_token: CancellationToken | None = None,
        handle_signals: bool = True,
    ) -> None:
        self._git = git
        self.branch = branch
        self.persist_dir = Path(persist_dir) if persist_dir else None
        self.cancel_token = cancel_token or CancellationToken()
        self._handle_signals = handle_signals
        root = Path(tempfile.mkdtemp(prefix=ARTIFACT_DIR_PREFIX, dir=artifact_parent))
        self.artifacts = ArtifactStore(root)
        self._original_ref: str | None = None
        self._original_head: str | None = None
        self._touched = False
        self._cleaned = False
        self._failed_keys: list[str] = []
        self._persisted: list[Path] = []
        self._stack: ExitStack | None = None
        self._signal_scope: SignalScope | None = None

    @property
    def original_ref(self) -> str:
        if self._original_ref is None:
            raise GitEngineError("original reference has not been captured")
        return self._original_ref

    @property
    def original_head(self) -> str:
        if self._original_head is None:
            raise GitEngineError("original reference has not been captured")
        return self._original_head

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    @property
    def persisted(self) -> tuple[Path, ...]:
        return tuple(self._persisted)

    @property
    def failed_keys(self) -> tuple[str, ...]:
        return tuple(self._failed_keys)

    def capture(self) -> str:
        """Record the checked-out reference; later calls keep the first capture."""
        if self._original_ref is None:
            self._original_ref = self._git.current_reference()
            self._original_head = self._git.head()
            logger.debug(
                "captured original reference",
                extra={"ref": self._original_ref, "head": self._original_head},
            )
        return self._original_ref

    def __enter__(self) -> ResourceGuardian:
        stack = ExitStack()
        if self._handle_signals:
            self._signal_scope = stack.enter_context(cancel_on_signals(self.cancel_token))
        self._stack = stack
        try:
            self.capture()
        except BaseException:
            stack.close()
            self._stack = None
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.cleanup()
        except CleanupError:
            if exc is None:
                raise
            logger.exception("cleanup failed while unwinding from an error")
        finally:
            if self._stack is not None:
                self._stack.close()
                self._stack = None
            self._signal_scope = None

    def reset_scratch_branch(self) -> str:
        """Check out the scratch branch at the original commit and return its head."""
        self.capture()
        self._touched = True
        tip = self._git.create_and_checkout_branch(self.branch, self.original_head)
        logger.debug("scratch branch reset", extra={"branch": self.branch, "tip": tip})
        return tip

    def mark_failed(self, key: str) -> None:
        """Register an artifact to relocate when a persistent directory was requested."""
        if key not in self._failed_keys:
            self._failed_keys.append(key)

    def cleanup(self) -> None:
        if self._cleaned:
            return
        if self._signal_scope is not None:
            self._signal_scope.shield()

        failures: list[tuple[str, BaseException]] = []
        if self._touched and self._original_ref is not None:
            self._attempt("abort merge", self._git.abort_in_progress_merge, failures)
            self._attempt("restore checkout", self._restore_checkout, failures)
            self._attempt("delete scratch branch", self._delete_scratch_branch, failures)
        self._attempt("release artifacts", self._release_artifacts, failures)

        self._cleaned = True
        if failures:
            raise CleanupError(failures)

    def _restore_checkout(self) -> None:
        self._git.checkout(self.original_ref, force=True)

    def _delete_scratch_branch(self) -> None:
        if self.branch == self.original_ref:
            return
        self._git.delete_branch(self.branch)

    def _release_artifacts(self) -> None:
        root = self.artifacts.root
        if self.persist_dir is not None and self._failed_keys:
            self.persist_dir.mkdir(parents=True, exist_ok=True)
            for key in self._failed_keys:
                source = self.artifacts.path_for(key)
                if not source.exists():
                    continue
                target = self.persist_dir / source.name
                shutil.copyfile(source, target)
                self._persisted.append(target)
            logger.info(
                "persisted failure artifacts",
                extra={"directory": str(self.persist_dir), "count": len(self._persisted)},
            )
        if root.exists():
            shutil.rmtree(root)

    @staticmethod
    def _attempt(
        step: str,
        action: Callable[[], object],
        failures: list[tuple[str, BaseException]],
    ) -> None:
        try:
            action()
        except (GitEngineError, OSError) as exc:
            logger.error("cleanup step failed: %s", step, extra={"error": str(exc)})
            failures.append((step, exc))


__all__ = ["CleanupError", "ResourceGuardian"]
