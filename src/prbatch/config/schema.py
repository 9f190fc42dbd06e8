"""
prbatch — runtime config schema

Purpose
- Define the deterministic built-in defaults and strict validation of the
  effective runtime configuration.

Normative behavior
- Unknown sections and keys are rejected with a structured issue each.
- Target names may be empty strings, which means "unset"; the test target and
  the build command may not.
- Validation never mutates its input; it returns a normalized deep copy.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from prbatch.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BUILD_COMMAND,
    DEFAULT_BUILD_TARGET,
    DEFAULT_CHANGE_REF_TEMPLATE,
    DEFAULT_CLEAN_TARGET,
    DEFAULT_INSTALL_TARGET,
    DEFAULT_REMOTE,
    DEFAULT_SCRATCH_BRANCH,
    DEFAULT_TEST_TARGET,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("run", "log_dir"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class RemoteConfig(TypedDict):
    name: str
    ref_template: str


class MergeConfig(TypedDict):
    branch: str
    ff_only: bool


class BuildConfig(TypedDict):
    command: str
    jobs: int
    args: list[str]
    clean_target: str
    build_target: str
    test_target: str
    install_target: str


class RunConfig(TypedDict):
    fail_exit: bool
    log_dir: str


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str


class PrbatchConfig(TypedDict):
    meta: MetaConfig
    remote: RemoteConfig
    merge: MergeConfig
    build: BuildConfig
    run: RunConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PrbatchConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "remote": {
        "name": DEFAULT_REMOTE,
        "ref_template": DEFAULT_CHANGE_REF_TEMPLATE,
    },
    "merge": {
        "branch": DEFAULT_SCRATCH_BRANCH,
        "ff_only": True,
    },
    "build": {
        "command": DEFAULT_BUILD_COMMAND,
        "jobs": 0,
        "args": [],
        "clean_target": DEFAULT_CLEAN_TARGET,
        "build_target": DEFAULT_BUILD_TARGET,
        "test_target": DEFAULT_TEST_TARGET,
        "install_target": DEFAULT_INSTALL_TARGET,
    },
    "run": {
        "fail_exit": False,
        "log_dir": "",
    },
    "observability": {
        "log_level": "WARNING",
        "log_dir": "",
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One rejected setting, addressed by its dotted path."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; carries every issue found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: unknown failure"))


class _Rejected(Exception):
    def __init__(self, message: str, *, suffix: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.suffix = suffix


def _kind(value: object) -> str:
    return type(value).__name__


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Rejected(f"expected string, got {_kind(value)}")
    if not value.strip():
        raise _Rejected("must not be empty")
    return value.strip()


def _optional_text(value: object) -> str:
    if not isinstance(value, str):
        raise _Rejected(f"expected string, got {_kind(value)}")
    return value.strip()


def _directory(value: object) -> str:
    text = _optional_text(value)
    if "\x00" in text:
        raise _Rejected("must not contain NUL bytes")
    return text


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Rejected(f"expected boolean, got {_kind(value)}")
    return value


def _non_negative(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Rejected(f"expected integer, got {_kind(value)}")
    if value < 0:
        raise _Rejected("must be >= 0")
    return value


def _argv(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise _Rejected(f"expected array of strings, got {_kind(value)}")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise _Rejected(f"expected string, got {_kind(item)}", suffix=f"[{index}]")
    return list(value)


def _ref_template(value: object) -> str:
    template = _text(value)
    if "{change}" not in template:
        raise _Rejected("must contain the {change} placeholder")
    return template


def _log_level(value: object) -> str:
    level = _text(value).upper()
    if level not in LOG_LEVELS:
        raise _Rejected(f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}")
    return level


def _schema_version(value: object) -> int:
    version = _non_negative(value)
    if version != ConfigSchemaVersion:
        raise _Rejected(f"unsupported schema version {version}; expected {ConfigSchemaVersion}")
    return version


# Every setting and the rule that normalizes it. A rule raises ``_Rejected``.
_RULES: Final[dict[str, dict[str, Callable[[object], object]]]] = {
    "meta": {"schema_version": _schema_version},
    "remote": {"name": _text, "ref_template": _ref_template},
    "merge": {"branch": _text, "ff_only": _flag},
    "build": {
        "command": _text,
        "jobs": _non_negative,
        "args": _argv,
        "clean_target": _optional_text,
        "build_target": _optional_text,
        "test_target": _text,
        "install_target": _optional_text,
    },
    "run": {"fail_exit": _flag, "log_dir": _directory},
    "observability": {"log_level": _log_level, "log_dir": _directory},
}


def default_config() -> PrbatchConfig:
    """Fresh deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; tables merge, everything else replaces."""

    merged: dict[str, Any] = {key: copy.deepcopy(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    """Check ``config`` against the known settings without raising.

    Issues are ordered: unknown top-level sections first, then per section
    unknown keys, missing keys, and bad values.
    """

    issues: list[ConfigValidationIssue] = []

    def reject(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path=path, message=message))

    if not isinstance(config, Mapping):
        reject("<root>", f"expected object, got {_kind(config)}")
        return ConfigValidationResult(config=None, issues=tuple(issues))

    for name in sorted(config, key=str):
        if name not in _RULES:
            reject(str(name), "unknown section")

    normalized: dict[str, Any] = {}
    for section, rules in _RULES.items():
        table = config.get(section)
        if table is None:
            reject(section, "missing required section")
            continue
        if not isinstance(table, Mapping):
            reject(section, f"expected object, got {_kind(table)}")
            continue
        for key in sorted(table, key=str):
            if key not in rules:
                reject(f"{section}.{key}", "unknown field")
        for key in sorted(set(rules) - set(table)):
            reject(f"{section}.{key}", "missing required field")

        values: dict[str, Any] = {}
        for key, rule in rules.items():
            if key not in table:
                continue
            try:
                values[key] = rule(table[key])
            except _Rejected as problem:
                reject(f"{section}.{key}{problem.suffix}", problem.message)
        normalized[section] = values

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PrbatchConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
