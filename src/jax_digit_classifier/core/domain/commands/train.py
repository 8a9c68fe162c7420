from __future__ import annotations

from dataclasses import dataclass

from jax_digit_classifier.core.domain.utils.batching import TRAIN_INPUT_SCALE


@dataclass(frozen=True)
class TrainCommand:
    """Intent to train a digit classifier."""

    model_kind: str = "conv"
    num_classes: int = 11

    epochs: int = 10
    batch_size: int = 16
    max_batches: int = 10_000_000
    seed: int | None = 0

    # Shuffle once, then the first floor(N * train_fraction) samples train.
    train_fraction: float = 0.9

    # Learning-rate schedule: every `eval_every_batches` processed batches the
    # rate drops by `decay_step`, never below `min_learning_rate`.
    learning_rate: float = 0.1
    decay_step: float = 0.002
    min_learning_rate: float = 0.0001
    eval_every_batches: int = 200

    eval_batch_size: int = 128
    input_scale: float = TRAIN_INPUT_SCALE

    # If >0, stop when validation accuracy hasn't improved for this many epochs.
    early_stopping_patience: int = 0

    # Where to persist the trained model ('' to skip saving).
    model_path: str = ""
