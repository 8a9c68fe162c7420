from __future__ import annotations

import numpy as np

from jax_digit_classifier.core.domain.entities.dataset import SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort


class NpzSampleSource(SampleSourcePort):
    """Loads one labeled split from a .npz file.

    Expected keys for split `s`:
      - x_s: uint8 images, (N, H, W) or (N, C, H, W)
      - y_s: integer class labels, (N,)

    Handy for MNIST-style archives: convert once, then train repeatedly.
    """

    def __init__(self, *, path: str, split: str = "train") -> None:
        self._path = path
        self._split = split

    @property
    def description(self) -> str:
        return f"{self._path}[{self._split}]"

    def load(self) -> SampleSet:
        x_key, y_key = f"x_{self._split}", f"y_{self._split}"
        with np.load(self._path) as data:
            if x_key not in data or y_key not in data:
                raise ConfigurationError(f"{self._path} has no {x_key}/{y_key} arrays (found {sorted(data.files)})")
            x = data[x_key]
            y = data[y_key]

        if x.dtype != np.uint8:
            raise ConfigurationError(f"{x_key} must hold uint8 pixels, got {x.dtype}")
        if x.ndim not in (3, 4):
            raise ConfigurationError(f"{x_key} must be (N, H, W) or (N, C, H, W), got {x.shape}")
        return SampleSet.from_arrays(x, y)
