"""
prbatch — runtime config loader

Purpose
- Build the effective runtime config from four layers, lowest first:
  built-in defaults, ``prbatch.toml``, ``PRBATCH_*`` environment variables,
  and command-line overrides.

Normative behavior
- The file layer is validated on its own before env and CLI layers are
  applied, so a bad file is reported against the file.
- A missing ``prbatch.toml`` in the search directory is fine; a missing file
  named explicitly with ``--config`` is an error.
- Every scalar or list setting outside ``meta`` has an environment variable,
  named ``PRBATCH_<SECTION>_<KEY>``. Values are parsed according to the type
  of the built-in default.
- Non-empty ``log_dir`` settings are resolved against the directory holding
  the config file.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from prbatch.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "prbatch.toml"
ENV_PREFIX: Final[str] = "PRBATCH_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when a config source cannot be read or parsed."""


def load_config(
    config_path: str | Path | None = None,
    *,
    search_dir: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``cli_overrides`` maps dotted keys (``"build.jobs"``) to values; ``None``
    values are treated as "flag not given". ``environ`` defaults to
    ``os.environ``.
    """

    explicit = config_path is not None
    path = locate_config_file(config_path, search_dir)
    from_file = _read_toml(path) if path.is_file() or explicit else {}

    config = assert_valid_config(merge_config(default_config(), from_file))
    env = os.environ if environ is None else environ
    config = merge_config(config, env_overrides(env))
    config = merge_config(config, _expand_dotted(cli_overrides or {}))
    config = assert_valid_config(config)
    return assert_valid_config(normalize_paths(config, base_dir=path.parent))


def locate_config_file(config_path: str | Path | None, search_dir: str | Path | None) -> Path:
    """Absolute path of the config file that ``load_config`` would read."""

    if config_path is not None:
        return Path(config_path).expanduser().resolve()
    directory = Path.cwd() if search_dir is None else Path(search_dir)
    return (directory / DEFAULT_CONFIG_FILE).resolve()


def env_variable_names() -> dict[str, tuple[str, str]]:
    """Map every supported environment variable to its ``(section, key)``."""

    names: dict[str, tuple[str, str]] = {}
    for section, values in DEFAULT_CONFIG.items():
        if section == "meta":
            continue
        for key in values:
            names[f"{ENV_PREFIX}{section.upper()}_{key.upper()}"] = (section, key)
    return names


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect the settings given through ``PRBATCH_*`` variables."""

    overrides: dict[str, dict[str, object]] = {}
    for name, (section, key) in sorted(env_variable_names().items()):
        if name not in environ:
            continue
        template = DEFAULT_CONFIG[section][key]  # type: ignore[literal-required]
        value = _parse_env_value(name, environ[name], template)
        overrides.setdefault(section, {})[key] = value
    return overrides


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy of ``config`` with its path settings made absolute."""

    result = merge_config({}, config)
    for section, key in PATH_FIELDS:
        raw = result.get(section, {}).get(key)
        if isinstance(raw, str) and raw.strip():
            result[section][key] = _absolute_path(raw, base_dir)
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Compact, key-sorted JSON rendering of ``config``."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"cannot read config file {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc


def _parse_env_value(name: str, raw: str, template: object) -> object:
    text = raw.strip()
    if isinstance(template, bool):
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be one of: {', '.join(sorted(_TRUTHY | _FALSY))}")
    if isinstance(template, int):
        try:
            return int(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be an integer, got {raw!r}") from exc
    if isinstance(template, list):
        try:
            return shlex.split(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} is not a valid argument list: {exc}") from exc
    return text


def _expand_dotted(flat: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted, value in flat.items():
        if value is None:
            continue
        *parents, leaf = dotted.split(".")
        if not leaf or not all(parents):
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        node = nested
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return nested


def _absolute_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "env_variable_names",
    "load_config",
    "locate_config_file",
    "normalize_paths",
]
