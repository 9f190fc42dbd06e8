"""Unit tests for process exit-code routing.

File: tests/unit/test_main.py
"""

from __future__ import annotations

import pytest

from prbatch import main as main_module
from prbatch.config import ConfigLoadError
from prbatch.control_plane import PreconditionError
from prbatch.main import ExitCode, cli_entrypoint
from prbatch.utils.concurrency import RunInterrupted


def _raise(exc: BaseException):  # type: ignore[no-untyped-def]
    def _run_cli(argv: object) -> int:
        raise exc

    return _run_cli


@pytest.fixture
def patch_run_cli(monkeypatch: pytest.MonkeyPatch):  # type: ignore[no-untyped-def]
    def _patch(replacement: object) -> None:
        monkeypatch.setattr("prbatch.ui.cli.run_cli", replacement)

    return _patch


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (PreconditionError("working tree has uncommitted changes"), ExitCode.USAGE_ERROR),
        (ConfigLoadError("config file not found"), ExitCode.USAGE_ERROR),
        (RunInterrupted("received SIGTERM"), ExitCode.INTERRUPTED),
        (RuntimeError("unexpected"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exceptions_are_routed_to_exit_codes(
    patch_run_cli,  # type: ignore[no-untyped-def]
    capsys: pytest.CaptureFixture[str],
    exc: BaseException,
    expected: ExitCode,
) -> None:
    patch_run_cli(_raise(exc))

    assert cli_entrypoint(["1"]) == expected
    err = capsys.readouterr().err
    if expected is ExitCode.INTERNAL_ERROR:
        assert "Traceback" in err
    else:
        assert err.startswith("error: ")


def test_wrapped_interrupt_is_still_an_interruption() -> None:
    try:
        try:
            raise RunInterrupted("received SIGINT")
        except RunInterrupted as inner:
            raise RuntimeError("cleanup noticed") from inner
    except RuntimeError as outer:
        assert main_module._route_exception(outer) is ExitCode.INTERRUPTED


def test_keyboard_interrupt_maps_to_130(patch_run_cli) -> None:  # type: ignore[no-untyped-def]
    patch_run_cli(_raise(KeyboardInterrupt()))

    assert cli_entrypoint([]) == 130


@pytest.mark.parametrize(("returned", "expected"), [(0, 0), (1, 1), (2, 2), (None, 0), (99, 4)])
def test_return_values_are_normalized(
    patch_run_cli,  # type: ignore[no-untyped-def]
    returned: object,
    expected: int,
) -> None:
    patch_run_cli(lambda argv: returned)

    assert cli_entrypoint([]) == expected


def test_argparse_usage_errors_keep_their_code(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["--jobs", "many"]) == ExitCode.USAGE_ERROR
    assert "invalid int value" in capsys.readouterr().err
