"""Ring buffer of server-reported queue times.

ArangoDB reports how long a request waited in the server queue through the
``x-arango-queue-time-seconds`` response header. The tracker keeps the most
recent samples so callers can watch for cluster saturation.
"""

from __future__ import annotations

import time
from collections import deque
from typing import NamedTuple

DEFAULT_QUEUE_TIME_SAMPLES = 10


class QueueTimeSample(NamedTuple):
    timestamp: float
    queue_time: float


class QueueTimeTracker:
    """Bounded, oldest-first buffer of :class:`QueueTimeSample` values.

    A negative capacity means the buffer is unbounded.
    """

    def __init__(self, capacity: int = DEFAULT_QUEUE_TIME_SAMPLES) -> None:
        self._samples: deque[QueueTimeSample] = deque(maxlen=self._maxlen(capacity))

    @staticmethod
    def _maxlen(capacity: int) -> int | None:
        return None if capacity < 0 else capacity

    @property
    def capacity(self) -> int:
        maxlen = self._samples.maxlen
        return -1 if maxlen is None else maxlen

    def __len__(self) -> int:
        return len(self._samples)

    def record(self, queue_time: float, timestamp: float | None = None) -> None:
        """Append a sample, evicting the oldest one when full."""
        if timestamp is None:
            timestamp = time.time()
        self._samples.append(QueueTimeSample(timestamp, float(queue_time)))

    def set_capacity(self, capacity: int) -> None:
        """Change the capacity, keeping the most recent samples."""
        self._samples = deque(self._samples, maxlen=self._maxlen(capacity))

    def get_values(self) -> list[QueueTimeSample]:
        return list(self._samples)

    def get_latest(self) -> float | None:
        if not self._samples:
            return None
        return self._samples[-1].queue_time

    def get_avg(self) -> float:
        if not self._samples:
            return 0.0
        return sum(sample.queue_time for sample in self._samples) / len(self._samples)

    def reset(self) -> None:
        self._samples.clear()


__all__ = ["DEFAULT_QUEUE_TIME_SAMPLES", "QueueTimeSample", "QueueTimeTracker"]
