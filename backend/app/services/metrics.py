from __future__ import annotations

from typing import Protocol

from prometheus_client import CollectorRegistry, Counter

NOTIFICATIONS_TOTAL = "appstore_notifications_total"


class MetricsSink(Protocol):
    def increment(self, name: str, **labels: str) -> None:
        ...


class PrometheusMetrics:
    """Labeled prometheus counters for webhook processing.

    Each sink owns its registry unless one is passed in, so several
    processors can coexist without duplicate registration errors.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.notifications_total = Counter(
            NOTIFICATIONS_TOTAL,
            "App Store notifications by type and outcome",
            ["type", "outcome"],
            registry=self.registry,
        )
        self._counters = {NOTIFICATIONS_TOTAL: self.notifications_total}

    def increment(self, name: str, **labels: str) -> None:
        counter = self._counters.get(name)
        if counter is None:
            raise KeyError(f"metrica desconocida: {name}")
        counter.labels(**{k: str(v) for k, v in labels.items()}).inc()

    def _samples(self, name: str):
        for family in self._counters[name].collect():
            for sample in family.samples:
                if sample.name == name:
                    yield sample

    def value(self, name: str, **labels: str) -> int:
        wanted = {k: str(v) for k, v in labels.items()}
        for sample in self._samples(name):
            if sample.labels == wanted:
                return int(sample.value)
        return 0

    def snapshot(self) -> list[dict]:
        rows = [
            {"name": sample.name, "labels": dict(sample.labels), "value": int(sample.value)}
            for name in self._counters
            for sample in self._samples(name)
        ]
        return sorted(rows, key=lambda r: (r["name"], sorted(r["labels"].items())))
