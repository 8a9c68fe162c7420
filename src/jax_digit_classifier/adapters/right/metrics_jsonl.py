from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any

import numpy as np

from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort


def _event_value(value: Any) -> Any:
    """Convert one event value to plain JSON types.

    NumPy/JAX scalars and arrays become Python numbers and lists, enums their
    value. NaN and infinities (e.g. the loss of an epoch that saw no batch)
    become None so every line stays strict JSON.
    """

    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, np.generic) or (hasattr(value, "shape") and hasattr(value, "dtype")):
        value = np.asarray(value)
        value = value.item() if value.shape == () else value.tolist()

    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, dict):
        return {str(k): _event_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_event_value(v) for v in value]
    return str(value)


class JsonlFileMetricsSink(MetricsSinkPort):
    """Append-only JSONL event log.

    One line per event:
      {"ts": "...", "step": 123, "run": "train-conv", "metrics": {...}}
    `run` is omitted when no run name is given; `plot-metrics` uses it to
    tell several runs in one file apart.
    """

    def __init__(self, *, path: str | Path, run: str | None = None) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._run = run
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def log(self, *, step: int, metrics: dict[str, Any]) -> None:
        record: dict[str, Any] = {"ts": datetime.now(timezone.utc).isoformat(), "step": int(step)}
        if self._run:
            record["run"] = self._run
        record["metrics"] = _event_value(metrics)
        line = json.dumps(record, ensure_ascii=False, allow_nan=False)

        with self._lock, self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


class CompositeMetricsSink(MetricsSinkPort):
    """Send every event to each of `sinks` in order (e.g. stdout and a JSONL file)."""

    def __init__(self, *sinks: MetricsSinkPort | None) -> None:
        self._sinks = [s for s in sinks if s is not None]

    def log(self, *, step: int, metrics: dict[str, Any]) -> None:
        for sink in self._sinks:
            sink.log(step=step, metrics=metrics)
