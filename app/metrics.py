from __future__ import annotations

import threading
from collections import Counter
from typing import Dict


class Metrics:
    """Counter sink injected into the store and generation calls."""

    def increment(self, name: str, value: int = 1) -> None:
        raise NotImplementedError


class NullMetrics(Metrics):
    def increment(self, name: str, value: int = 1) -> None:
        return None


class InMemoryMetrics(Metrics):
    # Shared by request handlers running on the server's worker threads.
    def __init__(self) -> None:
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counts[name] += value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(sorted(self._counts.items()))
