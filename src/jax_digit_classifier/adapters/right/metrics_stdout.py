from __future__ import annotations

from typing import Any

from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


class StdoutMetricsSink(MetricsSinkPort):
    """Prints one `[step=N] key=value, ...` line per event."""

    def __init__(self, *, skip_events: tuple[str, ...] = ()) -> None:
        self._skip = set(skip_events)

    def log(self, *, step: int, metrics: dict[str, Any]) -> None:
        if metrics.get("event") in self._skip:
            return
        items = ", ".join(f"{k}={_fmt(v)}" for k, v in metrics.items())
        print(f"[step={step}] {items}", flush=True)
