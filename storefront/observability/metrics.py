"""
In-process metrics for the API.

Counters, gauges and latency summaries are kept per (name, labels) pair in a
single registry guarded by a lock; ``get_metrics_snapshot`` renders them for
the admin metrics endpoint. Nothing is exported to an external system.
"""
from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

Labels = Optional[Dict[str, Any]]
MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]

MAX_EVENTS = 100


def _key(name: str, labels: Labels) -> MetricKey:
    if not labels:
        return name, ()
    return name, tuple(sorted((key, str(value)) for key, value in labels.items()))


@dataclass
class LatencySummary:
    count: int = 0
    total: float = 0.0
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = value if self.min_value is None else min(self.min_value, value)
        self.max_value = value if self.max_value is None else max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.min_value,
            "max": self.max_value,
        }


class MetricsRegistry:
    def __init__(self, max_events: int = MAX_EVENTS) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._gauges: Dict[MetricKey, float] = {}
        self._latencies: Dict[MetricKey, LatencySummary] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float, labels: Labels) -> None:
        with self._lock:
            self._counters[_key(name, labels)] += amount

    def set_gauge(self, name: str, value: float, labels: Labels) -> None:
        with self._lock:
            self._gauges[_key(name, labels)] = value

    def observe(self, name: str, value: float, labels: Labels) -> None:
        with self._lock:
            self._latencies.setdefault(_key(name, labels), LatencySummary()).observe(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def counter_value(self, name: str, labels: Labels) -> float:
        with self._lock:
            return self._counters.get(_key(name, labels), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": _group(self._counters.items(), "value", lambda value: value),
                "gauges": _group(self._gauges.items(), "value", lambda value: value),
                "histograms": _group(self._latencies.items(), "stats", LatencySummary.snapshot),
                "events": list(self._events),
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latencies.clear()
            self._events.clear()


def _group(items, field_name, render) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for (name, labels), value in items:
        grouped.setdefault(name, []).append({"labels": dict(labels), field_name: render(value)})
    return grouped


_registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Labels = None) -> None:
    _registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Labels = None) -> None:
    _registry.set_gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Labels = None) -> None:
    _registry.observe(name, value, labels)


@contextmanager
def timed(name: str, labels: Labels = None) -> Iterator[None]:
    """Record the wall time of the enclosed block in milliseconds."""
    started = time.perf_counter()
    try:
        yield
    finally:
        observe_latency(name, (time.perf_counter() - started) * 1000, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    _registry.event(name, payload)


def get_counter_value(name: str, labels: Labels = None) -> float:
    return _registry.counter_value(name, labels)


def get_metrics_snapshot() -> Dict[str, Any]:
    return _registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    _registry.reset()
