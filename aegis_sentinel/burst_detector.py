"""
Burst Detector: per-operation call counting over a fixed window.

Each operation kind keeps a single (count, window_start) pair. A call that
arrives after the window has elapsed opens a new window; history outside
the current window is discarded. Not thread-safe on its own: the sentinel
owns it and serializes access.
"""

from dataclasses import dataclass

from .models import DANGEROUS_OPERATIONS, OperationKind


@dataclass
class BurstWindow:
    count: int = 0
    window_start: float = 0.0


class BurstDetector:
    """Fixed-window call counter keyed by operation kind."""

    def __init__(self, window_seconds: float = 60, threshold: int = 5) -> None:
        self.window_seconds = window_seconds
        self.threshold = threshold
        self._windows: dict[OperationKind, BurstWindow] = {
            kind: BurstWindow() for kind in OperationKind
        }

    def _expired(self, window: BurstWindow, now: float) -> bool:
        return now > window.window_start + self.window_seconds

    def record_call(self, kind: OperationKind, now: float) -> int:
        """Count one call and return the in-window count including it."""
        window = self._windows[kind]
        if self._expired(window, now):
            window.window_start = now
            window.count = 0
        window.count += 1
        return window.count

    def count_in_window(self, kind: OperationKind, now: float) -> int:
        window = self._windows[kind]
        if self._expired(window, now):
            return 0
        return window.count

    def is_bursting(self, kind: OperationKind, now: float) -> bool:
        return self.count_in_window(kind, now) > self.threshold

    def snapshot(self, now: float) -> dict[OperationKind, int]:
        """In-window counts for the dangerous kinds."""
        return {kind: self.count_in_window(kind, now) for kind in DANGEROUS_OPERATIONS}

    def reconfigure(self, window_seconds: float, threshold: int) -> None:
        self.window_seconds = window_seconds
        self.threshold = threshold

    def reset(self) -> None:
        for window in self._windows.values():
            window.count = 0
            window.window_start = 0.0
