"""Cancellation primitives for the single-threaded run loop.

A run performs one blocking operation at a time. Asynchronous interrupts are
turned into a cancellation request on a shared token, and the run loop checks
the token at its suspension points (before each change, before each pipeline
stage, and while a build process is being waited on).
"""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import FrameType

DEFAULT_CANCEL_SIGNALS: tuple[str, ...] = ("SIGINT", "SIGTERM", "SIGHUP")


class RunInterrupted(RuntimeError):
    """Raised at a suspension point once cancellation has been requested."""

    def __init__(self, reason: str = "run interrupted") -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunInterrupted(self._reason or "cancelled")


def _resolve_signals(names: Sequence[str]) -> list[signal.Signals]:
    resolved: list[signal.Signals] = []
    for name in names:
        value = getattr(signal, name, None)
        if isinstance(value, signal.Signals):
            resolved.append(value)
    return resolved


class SignalScope:
    """Handle for an active signal-to-cancellation translation."""

    def __init__(self, token: CancellationToken) -> None:
        self.token = token
        self._shielded = False
        self.received: list[str] = []

    @property
    def shielded(self) -> bool:
        return self._shielded

    def shield(self) -> None:
        """Stop escalating repeated signals; they are only recorded from now on."""
        self._shielded = True

    def handle(self, signum: int, _frame: FrameType | None = None) -> None:
        name = signal.Signals(signum).name
        self.received.append(name)
        if self.token.is_cancelled and not self._shielded:
            raise KeyboardInterrupt(name)
        self.token.cancel(f"received {name}")


@contextmanager
def cancel_on_signals(
    token: CancellationToken,
    signal_names: Sequence[str] = DEFAULT_CANCEL_SIGNALS,
) -> Iterator[SignalScope]:
    """Translate delivery of ``signal_names`` into ``token.cancel`` while in scope.

    The first signal only requests cancellation. A second one arriving before
    the run reacted raises ``KeyboardInterrupt`` so an unresponsive build can
    still be escaped, unless the scope has been shielded (cleanup in progress).
    Previous handlers are restored on exit. Outside the main thread signal
    handlers cannot be installed and the scope only carries the token.
    """

    scope = SignalScope(token)
    if threading.current_thread() is not threading.main_thread():
        yield scope
        return

    previous: dict[signal.Signals, object] = {}
    for sig in _resolve_signals(signal_names):
        previous[sig] = signal.getsignal(sig)
        signal.signal(sig, scope.handle)
    try:
        yield scope
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]


__all__ = [
    "DEFAULT_CANCEL_SIGNALS",
    "CancellationToken",
    "RunInterrupted",
    "SignalScope",
    "cancel_on_signals",
]
