"""Progress reporting, cancellation and the wall-clock budget of a pass."""

import logging
import threading
import time
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """Receives progress ticks and answers cancellation requests."""

    def report_progress(self, current: int, maximum: int) -> None:
        ...

    def is_cancelled(self) -> bool:
        ...


class NullProgress:
    """Progress sink that ignores ticks and never cancels."""

    def report_progress(self, current: int, maximum: int) -> None:
        pass

    def is_cancelled(self) -> bool:
        return False


class LoggingProgress:
    """Logs progress every ``step_percent`` percent; cancellable from another thread."""

    def __init__(self, step_percent: int = 10):
        self.step_percent = step_percent
        self.current = 0
        self.maximum = 0
        self._last_logged = -1
        self._cancelled = threading.Event()

    def report_progress(self, current: int, maximum: int) -> None:
        self.current = current
        self.maximum = maximum
        if maximum <= 0:
            return
        percent = int(100 * current / maximum)
        bucket = percent // self.step_percent
        if bucket != self._last_logged:
            self._last_logged = bucket
            logger.info(f"Bootstrap progress: {current}/{maximum} ({percent}%)")

    def cancel(self):
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()


class TimeBudget:
    """
    Soft wall-clock budget for one analysis pass.

    Checked between draws only: work already started is allowed to finish.
    """

    def __init__(self, max_duration_ms: Optional[int]):
        self.max_duration_ms = max_duration_ms
        self._started = time.monotonic()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000.0

    def expired(self) -> bool:
        if self.max_duration_ms is None:
            return False
        return self.elapsed_ms >= self.max_duration_ms
