"""Unit tests for argument parsing and CLI error handling.

File: tests/unit/test_cli.py
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from prbatch import __version__
from prbatch.ui.cli import build_parser, cli_overrides, run_cli

if TYPE_CHECKING:
    from pathlib import Path

    from conftest import GitSandbox


@pytest.mark.unit
class TestParser:
    def test_defaults_leave_every_override_unset(self) -> None:
        args = build_parser().parse_args(["101", "102"])

        assert args.changes == ["101", "102"]
        assert cli_overrides(args) == {}

    def test_flags_map_onto_dotted_config_keys(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(
            [
                "-r",
                "upstream",
                "--no-ff-only",
                "-j8",
                "-a",
                "V=1",
                "--build-arg",
                "CC=clang",
                "--build-command",
                "ninja",
                "--clean-target",
                "",
                "--test-target",
                "test",
                "--install-target",
                "install",
                "-f",
                "-l",
                str(tmp_path / "logs"),
                "-vv",
                "5",
            ]
        )

        assert cli_overrides(args) == {
            "remote.name": "upstream",
            "merge.ff_only": False,
            "build.jobs": 8,
            "build.args": ["V=1", "CC=clang"],
            "build.command": "ninja",
            "build.clean_target": "",
            "build.test_target": "test",
            "build.install_target": "install",
            "run.fail_exit": True,
            "run.log_dir": str((tmp_path / "logs").resolve()),
            "observability.log_level": "DEBUG",
        }

    def test_single_verbose_flag_selects_info(self) -> None:
        args = build_parser().parse_args(["-v"])

        assert cli_overrides(args) == {"observability.log_level": "INFO"}

    def test_version_flag_exits_cleanly(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as excinfo:
            build_parser().parse_args(["--version"])

        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


@pytest.mark.unit
class TestRunCliErrors:
    def test_non_repository_is_a_usage_error(
        self, git_sandbox: GitSandbox, capsys: pytest.CaptureFixture[str]
    ) -> None:
        plain = git_sandbox.root / "plain"
        plain.mkdir()

        assert run_cli(["--repo-root", str(plain), "1"]) == 2
        assert "error: " in capsys.readouterr().err

    def test_malformed_change_identity_is_a_usage_error(
        self, git_sandbox: GitSandbox, capsys: pytest.CaptureFixture[str]
    ) -> None:
        repo = git_sandbox.init_repo()

        assert run_cli(["--repo-root", str(repo), "--", "1", "-rf"]) == 2
        assert "cannot start with '-'" in capsys.readouterr().err
