"""Gateway startup state tracker.

Records the outcome of the most recent startup attempt so the status
endpoint can report failures instead of silently showing a loading page.

One ``StartupState`` is created per host process and handed to both the
controller and the status API. Startup attempts may run concurrently, so every
transition and every read happens under a single lock.
"""

import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class StartupSnapshot:
    """Point-in-time copy of the startup state."""
    in_progress: bool
    last_error: Optional[str]
    last_error_at: Optional[float]
    failure_count: int

    def to_dict(self) -> dict:
        return asdict(self)


class StartupState:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._in_progress = False
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[float] = None
        self._failure_count = 0

    def mark_in_progress(self) -> None:
        with self._lock:
            self._in_progress = True

    def mark_success(self) -> None:
        with self._lock:
            self._in_progress = False
            self._last_error = None
            self._last_error_at = None
            self._failure_count = 0

    def mark_failed(self, error: str) -> None:
        with self._lock:
            self._in_progress = False
            self._last_error = error
            self._last_error_at = self._clock()
            self._failure_count += 1

    def snapshot(self) -> StartupSnapshot:
        with self._lock:
            return StartupSnapshot(
                in_progress=self._in_progress,
                last_error=self._last_error,
                last_error_at=self._last_error_at,
                failure_count=self._failure_count,
            )
