from __future__ import annotations

from collections.abc import MutableMapping
from typing import Protocol

import numpy as np

from jax_digit_classifier.core.domain.entities.model import InputShape, LayerSpec, LossKind


class NetworkPort(Protocol):
    """Port for the numeric network engine.

    The core only builds a topology, trains and infers batch by batch, and
    persists the whole model as one opaque file. Callers must never train and
    infer concurrently on the same instance.
    """

    @property
    def properties(self) -> MutableMapping[str, str]:
        """String key/values persisted alongside the weights (e.g. input scale)."""
        ...

    @property
    def input_shape(self) -> InputShape | None: ...

    def set_input_shape(self, shape: InputShape) -> None: ...

    def set_loss_kind(self, kind: LossKind) -> None: ...

    def add_layer(self, spec: LayerSpec) -> None: ...

    def train_batch(self, x: np.ndarray, y: np.ndarray, learning_rate: float) -> float:
        """One update step; returns the batch loss."""
        ...

    def infer_batch(self, x: np.ndarray) -> np.ndarray:
        """Class scores of shape (n, num_classes)."""
        ...

    def save_model(self, path: str) -> bool: ...

    def load_model(self, path: str) -> bool: ...


class NetworkFactoryPort(Protocol):
    """Creates empty networks for the model lifecycle to configure or load into."""

    def create(self) -> NetworkPort: ...
