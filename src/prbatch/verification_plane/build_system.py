"""
Build-system collaborator.

Runs one build target per invocation with the configured tool and shared
flags, capturing combined stdout/stderr. The process is waited on in short
slices so a cancellation request terminates the whole process tree instead of
waiting for the build to finish.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

import psutil

from prbatch.utils.concurrency import CancellationToken, RunInterrupted

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS: Final[float] = 0.1
_TERMINATE_GRACE_SECONDS: Final[float] = 3.0


@dataclass(frozen=True, slots=True)
class TargetResult:
    """Outcome of one build-system invocation."""

    target: str | None
    argv: tuple[str, ...]
    exit_code: int
    output: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def build_flags(*, jobs: int = 0, args: Sequence[str] = ()) -> tuple[str, ...]:
    """Shared flags passed to every target: parallelism hint first, then user args."""

    flags: list[str] = []
    if jobs > 0:
        flags.append(f"-j{jobs}")
    flags.extend(item for item in args if item.strip())
    return tuple(flags)


def split_command(command: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(command, str):
        parts = tuple(shlex.split(command))
    else:
        parts = tuple(item for item in command if item.strip())
    if not parts:
        raise ValueError("build command must not be empty")
    return parts


class BuildSystem:
    """Run build targets in ``cwd`` with ``command``."""

    def __init__(
        self,
        command: str | Sequence[str],
        cwd: Path | str,
        *,
        cancel_token: CancellationToken | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.command = split_command(command)
        self.cwd = Path(cwd)
        self._token = cancel_token or CancellationToken()
        self._env_overrides = dict(env_overrides or {})

    def argv_for(self, target: str | None, flags: Sequence[str]) -> tuple[str, ...]:
        argv = [*self.command, *flags]
        if target:
            argv.append(target)
        return tuple(argv)

    def run_target(self, target: str | None, flags: Sequence[str] = ()) -> TargetResult:
        argv = self.argv_for(target, flags)
        env = os.environ.copy()
        env.update(self._env_overrides)
        started = time.monotonic_ns()
        logger.debug("running build target", extra={"argv": list(argv)})

        try:
            process = subprocess.Popen(
                argv,
                cwd=self.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            return TargetResult(
                target=target,
                argv=argv,
                exit_code=127,
                output=f"failed to start {argv[0]}: {exc}\n",
                duration_ms=_elapsed_ms(started),
            )

        output = self._wait(process)
        return TargetResult(
            target=target,
            argv=argv,
            exit_code=process.returncode,
            output=output,
            duration_ms=_elapsed_ms(started),
        )

    def _wait(self, process: subprocess.Popen[str]) -> str:
        while True:
            if self._token.is_cancelled:
                terminate_process_tree(process.pid)
                process.communicate()
                raise RunInterrupted(self._token.reason or "cancelled")
            try:
                stdout, _ = process.communicate(timeout=_POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                continue
            except KeyboardInterrupt:
                terminate_process_tree(process.pid)
                process.communicate()
                raise
            return stdout or ""


def terminate_process_tree(pid: int, *, grace_seconds: float = _TERMINATE_GRACE_SECONDS) -> None:
    """Terminate ``pid`` and its descendants, killing whatever outlives ``grace_seconds``."""

    try:
        parent = psutil.Process(pid)
        processes = [*parent.children(recursive=True), parent]
    except psutil.NoSuchProcess:
        return

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

    _gone, alive = psutil.wait_procs(processes, timeout=grace_seconds)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
    if alive:
        logger.warning("killed %d build processes after grace period", len(alive))


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


__all__ = [
    "BuildSystem",
    "TargetResult",
    "build_flags",
    "split_command",
    "terminate_process_tree",
]
