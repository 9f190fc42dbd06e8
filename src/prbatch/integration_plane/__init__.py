"""Integration plane: git collaborator and the per-change integration engine."""

from prbatch.integration_plane.git_engine import (
    CommandResult,
    GitCommandError,
    GitEngine,
    GitEngineError,
    MergeAttempt,
    SanitizationError,
)
from prbatch.integration_plane.integrator import (
    IntegrationEngine,
    IntegrationOutcome,
    IntegrationStateError,
    IntegrationStatus,
)

__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "IntegrationEngine",
    "IntegrationOutcome",
    "IntegrationStateError",
    "IntegrationStatus",
    "MergeAttempt",
    "SanitizationError",
]
