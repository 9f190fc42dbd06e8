"""Shared utilities for prbatch planes."""

from prbatch.utils.concurrency import (
    CancellationToken,
    RunInterrupted,
    SignalScope,
    cancel_on_signals,
)

__all__ = ["CancellationToken", "RunInterrupted", "SignalScope", "cancel_on_signals"]
