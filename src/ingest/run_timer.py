"""Tagged elapsed-time tracking for pipeline progress reports."""

from __future__ import annotations

import time
from typing import Callable


class RunTimer:
    """Track elapsed seconds for several named runs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started: dict[str, float] = {}

    def start(self, tag: str) -> "RunTimer":
        self._started[tag] = self._clock()
        return self

    def elapsed(self, tag: str, reset: bool = False) -> float:
        """Seconds since ``tag`` started; starts the tag when unknown or reset."""
        if tag not in self._started or reset:
            self._started[tag] = self._clock()
        return self._clock() - self._started[tag]

    def stop(self, tag: str) -> float:
        elapsed = self.elapsed(tag)
        del self._started[tag]
        return elapsed
