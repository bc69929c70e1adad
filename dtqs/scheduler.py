"""Thread-safe priority queue of deliveries awaiting processing."""

from __future__ import annotations

import heapq
import itertools
import threading
from dataclasses import dataclass
from typing import Any


@dataclass
class ScheduledTask:
    """A received message with its priority; lower numbers run first."""

    priority: int
    delivery: Any
    task_data: Any


class Scheduler:
    """Hands out tasks lowest priority number first, oldest first among equals."""

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, ScheduledTask]] = []
        self._lock = threading.Lock()
        self._counter = itertools.count()

    def add_task(self, task: ScheduledTask) -> None:
        with self._lock:
            heapq.heappush(self._heap, (task.priority, next(self._counter), task))

    def get_next(self) -> ScheduledTask | None:
        """Remove and return the next task, or None if the queue is empty."""
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[2]

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)