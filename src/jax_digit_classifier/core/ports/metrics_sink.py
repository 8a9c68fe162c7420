from __future__ import annotations

from typing import Any, Protocol


class MetricsSinkPort(Protocol):
    """Port for progress events and metrics emitted by the use cases.

    This is the only logging channel the core has; passing no sink keeps a
    use case silent.
    """

    def log(self, *, step: int, metrics: dict[str, Any]) -> None:
        ...
