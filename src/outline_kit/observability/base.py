from collections import defaultdict
from typing import Protocol


class MetricsHook(Protocol):
    def record_latency(
        self,
        name: str,
        value_ms: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def increment(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None: ...


class NoOpMetricsHook:
    def record_latency(
        self, name: str, value_ms: float, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def increment(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        pass


class InMemoryMetricsHook:
    """Keeps counters and latencies in memory.

    Handy for tests and for one-off scripts that print a build summary.
    Labels are ignored for latencies and folded into the counter key.
    """

    def __init__(self) -> None:
        self.counters: dict[str, int] = defaultdict(int)
        self.latencies: dict[str, list[float]] = defaultdict(list)

    def record_latency(
        self, name: str, value_ms: float, labels: dict[str, str] | None = None
    ) -> None:
        self.latencies[name].append(value_ms)

    def increment(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        self.counters[name] += value
        if labels:
            suffix = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
            self.counters[f"{name}{{{suffix}}}"] += value

    def count(self, name: str, **labels: str) -> int:
        if not labels:
            return self.counters.get(name, 0)
        suffix = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return self.counters.get(f"{name}{{{suffix}}}", 0)
