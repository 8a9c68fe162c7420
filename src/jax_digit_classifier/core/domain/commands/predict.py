from __future__ import annotations

from dataclasses import dataclass

from jax_digit_classifier.core.domain.utils.batching import IMAGE_INPUT_SCALE


@dataclass(frozen=True)
class PredictCommand:
    """Intent to label ad-hoc image files with a persisted model.

    Images are decoded to grayscale, resized to width x height and binarized at
    `threshold` before scaling. `input_scale=None` uses the scale recorded in the
    model file (falling back to IMAGE_INPUT_SCALE when none was recorded).
    """

    model_path: str
    paths: tuple[str, ...] = ()
    batch_size: int = 16
    width: int = 32
    height: int = 32
    threshold: int = 127
    input_scale: float | None = IMAGE_INPUT_SCALE
