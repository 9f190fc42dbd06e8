"""Command-line interface for prbatch."""

from __future__ import annotations

import argparse
import json
import logging
import secrets
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from rich.console import Console

from prbatch import __version__
from prbatch.config import load_config
from prbatch.control_plane import NullObserver, Orchestrator, ResourceGuardian, RunObserver
from prbatch.domain import ChangeSet, ChangeSetError, RunOutcome
from prbatch.integration_plane import GitEngine, GitEngineError, IntegrationEngine
from prbatch.observability import LoggingConfig, setup_logging, shutdown_logging
from prbatch.ui.reporter import StatusReporter, summary_payload
from prbatch.utils.concurrency import CancellationToken
from prbatch.verification_plane import BuildSystem, ValidationRunner, ValidationSettings

logger = logging.getLogger(__name__)

_DESCRIPTION = """\
Test a batch of proposed changes against the checked-out branch.

Every change is fetched from the remote and squash-merged onto a scratch
branch. The whole batch is validated once; only when that fails is each
change validated on its own, so that failing changes can be singled out.
The original checkout is restored afterwards.
"""

_EPILOG = """\
examples:
  prbatch 101 102 103
  prbatch -j8 --test-target test --fail-exit 101 102
  prbatch --remote upstream --log-dir failures/ 101
"""


class CLIError(RuntimeError):
    """CLI failure with an explicit process exit code."""

    def __init__(self, message: str, *, exit_code: int = 2) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prbatch",
        description=_DESCRIPTION,
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("changes", nargs="*", metavar="CHANGE", help="Change identities, in order")
    parser.add_argument("--version", action="version", version=f"prbatch {__version__}")

    source = parser.add_argument_group("source")
    source.add_argument("-r", "--remote", default=None, help="Remote to fetch changes from")
    source.add_argument(
        "--repo-root",
        default=None,
        help="Repository to operate on (default: current directory)",
    )
    source.add_argument(
        "--config",
        default=None,
        help="Config file (default: prbatch.toml at the repository root)",
    )
    source.add_argument(
        "--no-ff-only",
        dest="ff_only",
        action="store_false",
        default=None,
        help="Allow squash merges that are not fast-forwards",
    )

    build = parser.add_argument_group("build")
    build.add_argument("-j", "--jobs", type=int, default=None, help="Parallel build jobs")
    build.add_argument(
        "-a",
        "--build-arg",
        dest="build_args",
        action="append",
        default=None,
        metavar="ARG",
        help="Extra argument for every build invocation (repeatable)",
    )
    build.add_argument("--build-command", default=None, help="Build tool command line")
    build.add_argument("--clean-target", default=None, help="Clean target ('' to skip)")
    build.add_argument("--build-target", default=None, help="Build target ('' to skip)")
    build.add_argument("--test-target", default=None, help="Test target")
    build.add_argument("--install-target", default=None, help="Install target ('' to skip)")

    output = parser.add_argument_group("output")
    output.add_argument(
        "-f",
        "--fail-exit",
        action="store_true",
        default=None,
        help="Exit with status 1 when any change was rejected",
    )
    output.add_argument(
        "-l",
        "--log-dir",
        default=None,
        help="Keep the logs of failing changes in this directory",
    )
    output.add_argument("--json", action="store_true", help="Emit a JSON summary on stdout")
    output.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress to stderr (-vv for debug output)",
    )
    output.add_argument("--no-color", action="store_true", help="Disable colored output")
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, run the batch, and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _cmd_run(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code


def cli_overrides(args: argparse.Namespace) -> dict[str, object]:
    """Map parsed flags onto dotted config keys; unset flags are omitted."""

    overrides: dict[str, object | None] = {
        "remote.name": args.remote,
        "merge.ff_only": args.ff_only,
        "build.jobs": args.jobs,
        "build.args": list(args.build_args) if args.build_args is not None else None,
        "build.command": args.build_command,
        "build.clean_target": args.clean_target,
        "build.build_target": args.build_target,
        "build.test_target": args.test_target,
        "build.install_target": args.install_target,
        "run.fail_exit": args.fail_exit,
        "run.log_dir": str(Path(args.log_dir).resolve()) if args.log_dir else None,
    }
    if args.verbose:
        overrides["observability.log_level"] = "DEBUG" if args.verbose > 1 else "INFO"
    return {key: value for key, value in overrides.items() if value is not None}


def _cmd_run(args: argparse.Namespace) -> int:
    repo_hint = Path(args.repo_root) if args.repo_root else Path.cwd()
    try:
        repo_root = GitEngine(repo_hint).ensure_repository()
    except GitEngineError as exc:
        raise CLIError(str(exc)) from exc

    config = load_config(args.config, search_dir=repo_root, cli_overrides=cli_overrides(args))
    try:
        changes = ChangeSet.from_ids(args.changes, ref_template=config["remote"]["ref_template"])
    except ChangeSetError as exc:
        raise CLIError(str(exc)) from exc

    run_id = _new_run_id()
    observability = config["observability"]
    handle = setup_logging(
        LoggingConfig(
            run_id=run_id,
            level=observability["log_level"],
            log_dir=observability["log_dir"] or None,
        )
    )
    logger.debug("effective config", extra={"config": config, "repo_root": str(repo_root)})

    observer: RunObserver
    reporter: StatusReporter | None = None
    persist_dir = config["run"]["log_dir"] or None
    if args.json:
        observer = NullObserver()
    else:
        reporter = StatusReporter(
            Console(stderr=True, no_color=args.no_color),
            page_failures=persist_dir is None and sys.stdin.isatty(),
        )
        observer = reporter

    try:
        outcome = _compose(config, repo_root, changes, observer, persist_dir).run()
    finally:
        if reporter is not None:
            reporter.close()
        shutdown_logging(handle)

    if args.json:
        payload = summary_payload(
            outcome, artifact_dir=Path(persist_dir) if persist_dir is not None else None
        )
        print(json.dumps(payload, sort_keys=True, indent=2))
    return _exit_code(outcome, fail_exit=bool(config["run"]["fail_exit"]))


def _compose(
    config: dict[str, Any],
    repo_root: Path,
    changes: ChangeSet,
    observer: RunObserver,
    persist_dir: str | None,
) -> Orchestrator:
    token = CancellationToken()
    git = GitEngine(repo_root)
    guardian = ResourceGuardian(
        git,
        branch=config["merge"]["branch"],
        persist_dir=persist_dir,
        cancel_token=token,
    )
    build_section = config["build"]
    build_system = BuildSystem(build_section["command"], repo_root, cancel_token=token)
    runner = ValidationRunner(
        build_system,
        guardian.artifacts,
        ValidationSettings.from_config(build_section),
        cancel_token=token,
    )
    integrator = IntegrationEngine(
        git,
        remote=config["remote"]["name"],
        ff_only=config["merge"]["ff_only"],
    )
    return Orchestrator(
        git=git,
        integrator=integrator,
        runner=runner,
        guardian=guardian,
        changes=changes,
        observer=observer,
        cancel_token=token,
    )


def _exit_code(outcome: RunOutcome, *, fail_exit: bool) -> int:
    if fail_exit and outcome.has_failures:
        return 1
    return 0


def _new_run_id() -> str:
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{secrets.token_hex(3)}"


__all__ = ["CLIError", "build_parser", "cli_overrides", "run_cli"]
