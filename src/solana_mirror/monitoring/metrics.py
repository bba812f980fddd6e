"""Thread-safe in-process counters and histograms."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from statistics import mean, median
from typing import Deque, Dict, MutableMapping


class MetricsRegistry:
    """In-memory metrics store used to audit fetch and parse behaviour."""

    def __init__(self, *, max_hist_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._max_hist_samples = max_hist_samples
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=self._max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            counters = dict(self._counters)
            histograms = {key: self._histogram_stats(values) for key, values in self._histograms.items()}
        return {"counters": counters, "histograms": histograms}

    @staticmethod
    def _histogram_stats(values: Deque[float]) -> Dict[str, float]:
        if not values:
            return {}
        ordered = sorted(values)
        return {
            "count": float(len(ordered)),
            "avg": mean(ordered),
            "p50": median(ordered),
            "max": ordered[-1],
        }


METRICS = MetricsRegistry()


__all__ = ["METRICS", "MetricsRegistry"]
