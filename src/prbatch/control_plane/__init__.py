"""Control plane: batch orchestration and resource guarding."""

from prbatch.control_plane.guardian import CleanupError, ResourceGuardian
from prbatch.control_plane.orchestrator import (
    NullObserver,
    Orchestrator,
    PreconditionError,
    RunObserver,
)

__all__ = [
    "CleanupError",
    "NullObserver",
    "Orchestrator",
    "PreconditionError",
    "ResourceGuardian",
    "RunObserver",
]
