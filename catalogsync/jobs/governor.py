from __future__ import annotations

import logging
import time
from typing import Callable

import psutil

from catalogsync.core.config import Settings

logger = logging.getLogger(__name__)


def current_process_rss() -> int:
    return int(psutil.Process().memory_info().rss)


class ResourceGovernor:
    """Soft time and memory budget for one worker run.

    The clock starts on the first ``start()`` call and keeps running until
    ``reset()``. Callers reset it at the top of each scheduled run, so the
    jobs handled within that run share one time budget.
    """

    def __init__(
        self,
        *,
        time_limit_seconds: float,
        memory_limit_bytes: int,
        clock: Callable[[], float] = time.monotonic,
        memory_probe: Callable[[], int] = current_process_rss,
    ):
        if time_limit_seconds <= 0:
            raise ValueError("time_limit_seconds must be greater than zero")
        if memory_limit_bytes <= 0:
            raise ValueError("memory_limit_bytes must be greater than zero")
        self._time_limit_seconds = time_limit_seconds
        self._memory_limit_bytes = memory_limit_bytes
        self._clock = clock
        self._memory_probe = memory_probe
        self._started_at: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResourceGovernor":
        return cls(
            time_limit_seconds=settings.time_limit_seconds,
            memory_limit_bytes=settings.memory_threshold_bytes,
        )

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def reset(self) -> None:
        self._started_at = None

    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def time_exceeded(self) -> bool:
        exceeded = self.elapsed_seconds() >= self._time_limit_seconds
        if exceeded:
            logger.debug("Time budget of %.1fs exhausted", self._time_limit_seconds)
        return exceeded

    def memory_exceeded(self) -> bool:
        usage = self._memory_probe()
        exceeded = usage >= self._memory_limit_bytes
        if exceeded:
            logger.debug("Memory usage %d bytes reached threshold %d bytes", usage, self._memory_limit_bytes)
        return exceeded

    def exhausted(self) -> bool:
        return self.time_exceeded() or self.memory_exceeded()
