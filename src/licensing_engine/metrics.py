"""In-process observability counters.

Side effects that are allowed to fail (license trigger, alert channels,
cache invalidation) are counted here in addition to being logged, so an
operator can see failures that never reach a caller.

Usage:
    from licensing_engine.metrics import metrics

    metrics.increment("side_effect_failures_total", operation="license_trigger")
    print(metrics.to_prometheus())
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


HELP_TEXT: dict[str, str] = {
    "side_effect_failures_total": "Best-effort side effects that raised and were suppressed",
    "webhook_callbacks_total": "Payment gateway callbacks received, by kind and outcome",
    "alert_deliveries_total": "Alert channel delivery attempts, by channel and outcome",
    "workflow_transitions_total": "Workflow assignments applied, by target group",
    "applicant_write_conflicts_total": "Compare-and-swap misses on applicant writes",
}


class MetricsRegistry:
    """Thread-safe registry of labelled counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}

    def increment(self, name: str, amount: int = 1, **labels: Any) -> None:
        """Increment a counter identified by name and labels."""
        key = (name, tuple(sorted((k, str(v)) for k, v in labels.items())))
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def get(self, name: str, **labels: Any) -> int:
        """Current value of one counter (0 when never incremented)."""
        key = (name, tuple(sorted((k, str(v)) for k, v in labels.items())))
        with self._lock:
            return self._values.get(key, 0)

    def counters(self) -> list[Counter]:
        """Snapshot of all counters."""
        with self._lock:
            items = sorted(self._values.items())
        return [
            Counter(
                name=name,
                value=value,
                labels=dict(labels),
                help_text=HELP_TEXT.get(name, ""),
            )
            for (name, labels), value in items
        ]

    def reset(self) -> None:
        """Drop all counters."""
        with self._lock:
            self._values.clear()

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dictionary."""
        return {
            "collected_at": datetime.now(timezone.utc).isoformat(),
            "counters": [
                {"name": c.name, "value": c.value, "labels": c.labels}
                for c in self.counters()
            ],
        }

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines: list[str] = []
        seen: set[str] = set()

        for metric in self.counters():
            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in metric.labels.items()]
                labels = "{" + ",".join(label_parts) + "}"

            if metric.name not in seen:
                if metric.help_text:
                    lines.append(f"# HELP {metric.name} {metric.help_text}")
                lines.append(f"# TYPE {metric.name} counter")
                seen.add(metric.name)
            lines.append(f"{metric.name}{labels} {metric.value}")

        return "\n".join(lines)


metrics = MetricsRegistry()
