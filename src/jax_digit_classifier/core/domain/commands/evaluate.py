from __future__ import annotations

from dataclasses import dataclass

from jax_digit_classifier.core.domain.utils.batching import TRAIN_INPUT_SCALE


@dataclass(frozen=True)
class EvaluateCommand:
    """Intent to score a held-out sample set with a persisted model."""

    model_path: str
    # None uses the class count recorded in the model file.
    num_classes: int | None = None
    batch_size: int = 64
    input_scale: float = TRAIN_INPUT_SCALE
