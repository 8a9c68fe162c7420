from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from jax_digit_classifier.core.domain.errors.training import DegenerateAccuracyError


@dataclass(frozen=True)
class EncodedBatch:
    """A single encoded batch.

    `x` has shape (n, channels, width, height) and holds scaled pixels.
    `y` is the one-hot label tensor of shape (n, num_classes, 1, 1), or None for
    inference-only batches. The arrays are NumPy; adapters convert as needed.
    """

    x: np.ndarray
    y: np.ndarray | None
    offset: int = 0

    @property
    def length(self) -> int:
        return int(self.x.shape[0])


@dataclass(frozen=True)
class AccuracyResult:
    correct: int
    total: int

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise DegenerateAccuracyError("accuracy is undefined over zero samples")
        if not 0 <= self.correct <= self.total:
            raise ValueError(f"correct must be in [0, {self.total}], got {self.correct}")

    @property
    def accuracy(self) -> float:
        # float32 fraction, matching the precision reported by the network engine
        return float(np.float32(self.correct) / np.float32(self.total))

    def __add__(self, other: AccuracyResult) -> AccuracyResult:
        return AccuracyResult(correct=self.correct + other.correct, total=self.total + other.total)
