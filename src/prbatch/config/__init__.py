"""
prbatch config package public API.

Purpose
- Export config loading/validation entrypoints and public error types.
- Support loading from ``prbatch.toml`` plus ``PRBATCH_`` env overrides.
"""

from prbatch.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    env_variable_names,
    load_config,
    locate_config_file,
    normalize_paths,
)
from prbatch.config.schema import (
    DEFAULT_CONFIG,
    LOG_LEVELS,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    PrbatchConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PrbatchConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_overrides",
    "env_variable_names",
    "load_config",
    "locate_config_file",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
