"""Minimal in-process counters and histograms for loading statistics."""

from __future__ import annotations

import math
import operator
import threading
from bisect import bisect_left
from itertools import accumulate, repeat


def exponential_buckets(start, factor, count):
    """Return `count` bucket bounds starting at `start`, each `factor` times the last."""
    if count < 1:
        raise ValueError("count must be positive")
    if start <= 0:
        raise ValueError("start must be positive")
    if factor <= 1:
        raise ValueError("factor must be greater than 1")
    return list(accumulate(repeat(factor, count - 1), operator.mul, initial=start))


def _full_name(namespace, subsystem, name):
    return "_".join(part for part in (namespace, subsystem, name) if part)


class Counter:
    """A monotonically increasing value."""

    def __init__(self, namespace, subsystem, name, help=""):
        self.name = _full_name(namespace, subsystem, name)
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self):
        with self._lock:
            return self._value

    def inc(self, amount=1.0):
        """Add a non-negative amount to the counter."""
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount


class Histogram:
    """Counts observations into cumulative buckets."""

    def __init__(self, namespace, subsystem, name, help="", buckets=()):
        bounds = list(buckets)
        if bounds and math.isinf(bounds[-1]):
            bounds.pop()
        if any(low >= high for low, high in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in increasing order")
        self.name = _full_name(namespace, subsystem, name)
        self.help = help
        self._bounds = tuple(bounds)
        self._counts = [0] * (len(bounds) + 1)
        self._sum = 0.0
        self._lock = threading.Lock()

    @property
    def bounds(self):
        return self._bounds

    @property
    def count(self):
        with self._lock:
            return sum(self._counts)

    @property
    def sum(self):
        with self._lock:
            return self._sum

    def cumulative_counts(self):
        """Return (upper bound, cumulative count) pairs, ending with +inf."""
        with self._lock:
            totals = list(accumulate(self._counts))
        return list(zip(self._bounds + (math.inf,), totals))

    def observe(self, value):
        """Record one observation."""
        with self._lock:
            self._counts[bisect_left(self._bounds, value)] += 1
            self._sum += value


LOCATIONS_LOADING_DURATION = Histogram(
    "forseti", "vehicle_locations", "load_durations_seconds",
    "http request latency distributions.", exponential_buckets(0.001, 1.5, 15),
)
LOCATIONS_LOADING_ERRORS = Counter(
    "forseti", "vehicle_locations", "loading_errors",
    "current number of http request being served",
)
OCCUPANCIES_LOADING_DURATION = Histogram(
    "forseti", "vehicle_occupancies", "load_durations_seconds",
    "http request latency distributions.", exponential_buckets(0.001, 1.5, 15),
)
OCCUPANCIES_LOADING_ERRORS = Counter(
    "forseti", "vehicle_occupancies", "loading_errors",
    "current number of http request being served",
)