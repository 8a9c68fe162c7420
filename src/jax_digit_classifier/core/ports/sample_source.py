from __future__ import annotations

from typing import Protocol

from jax_digit_classifier.core.domain.entities.dataset import SampleSet


class SampleSourcePort(Protocol):
    """Port for loading one labeled sample set (a directory, an archive, ...)."""

    @property
    def description(self) -> str: ...

    def load(self) -> SampleSet: ...
