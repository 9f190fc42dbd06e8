"""
prbatch — process entrypoint

Turns whatever ``prbatch.ui.cli.run_cli`` returns or raises into one of the
documented exit codes. Expected failures print a one-line ``error:`` message;
anything unclassified prints a traceback and exits with ``INTERNAL_ERROR``.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    CHANGES_REJECTED = 1
    USAGE_ERROR = 2
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


_EXIT_STATUSES = frozenset(code.value for code in ExitCode)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the process exit status."""

    # Imported per call so the CLI module can be replaced in tests.
    from prbatch.ui import cli

    try:
        outcome: object = cli.run_cli(argv)
    except SystemExit as stop:
        outcome = stop.code
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return ExitCode.INTERRUPTED.value
    except Exception as exc:  # noqa: BLE001 - top-level boundary
        code = _route_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(f"error: {str(exc).strip() or type(exc).__name__}", file=sys.stderr)
        return code.value
    return _as_exit_status(outcome)


def _as_exit_status(outcome: object) -> int:
    if outcome is None:
        return ExitCode.SUCCESS.value
    if isinstance(outcome, int) and outcome in _EXIT_STATUSES:
        return outcome
    if isinstance(outcome, str) and outcome.strip():
        print(outcome.strip(), file=sys.stderr)
    return ExitCode.INTERNAL_ERROR.value


def _route_exception(exc: BaseException) -> ExitCode:
    """Classify ``exc`` by the first recognised error in its cause chain."""

    from prbatch.config import ConfigLoadError, ConfigValidationError
    from prbatch.control_plane import PreconditionError
    from prbatch.utils.concurrency import RunInterrupted

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((RunInterrupted,), ExitCode.INTERRUPTED),
        (
            (
                ConfigLoadError,
                ConfigValidationError,
                PreconditionError,
                FileNotFoundError,
                NotADirectoryError,
                PermissionError,
            ),
            ExitCode.USAGE_ERROR,
        ),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    visited: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__


__all__ = ["ExitCode", "cli_entrypoint"]
