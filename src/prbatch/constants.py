"""Stable constants shared across prbatch planes."""

from __future__ import annotations

from typing import Final

# Remote conventions.
DEFAULT_REMOTE: Final[str] = "origin"
DEFAULT_CHANGE_REF_TEMPLATE: Final[str] = "pull/{change}/head"

# Scratch integration branch.
DEFAULT_SCRATCH_BRANCH: Final[str] = "prbatch/integration"
COMMIT_TRAILER_KEY: Final[str] = "Change-Id"

# Build-system defaults. An empty target means "unset".
DEFAULT_BUILD_COMMAND: Final[str] = "make"
DEFAULT_CLEAN_TARGET: Final[str] = "clean"
DEFAULT_TEST_TARGET: Final[str] = "check"
DEFAULT_BUILD_TARGET: Final[str] = ""
DEFAULT_INSTALL_TARGET: Final[str] = ""

# Artifact storage.
ARTIFACT_DIR_PREFIX: Final[str] = "prbatch-"
ARTIFACT_SUFFIX: Final[str] = ".log"
# Must never be a valid change identity.
COMBINED_ARTIFACT_KEY: Final[str] = "<combined>"
COMBINED_ARTIFACT_STEM: Final[str] = "combined"
CHANGE_ARTIFACT_PREFIX: Final[str] = "change-"

CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "ARTIFACT_DIR_PREFIX",
    "ARTIFACT_SUFFIX",
    "CHANGE_ARTIFACT_PREFIX",
    "COMBINED_ARTIFACT_KEY",
    "COMBINED_ARTIFACT_STEM",
    "COMMIT_TRAILER_KEY",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BUILD_COMMAND",
    "DEFAULT_BUILD_TARGET",
    "DEFAULT_CHANGE_REF_TEMPLATE",
    "DEFAULT_CLEAN_TARGET",
    "DEFAULT_INSTALL_TARGET",
    "DEFAULT_REMOTE",
    "DEFAULT_SCRATCH_BRANCH",
    "DEFAULT_TEST_TARGET",
]
