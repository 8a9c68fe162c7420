from __future__ import annotations

import numpy as np

from jax_digit_classifier.core.domain.entities.base import AccuracyResult
from jax_digit_classifier.core.domain.entities.dataset import SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, DegenerateAccuracyError
from jax_digit_classifier.core.domain.utils.batching import BatchEncoder
from jax_digit_classifier.core.ports.network import NetworkPort


def argmax_first(scores: np.ndarray) -> np.ndarray:
    """Row-wise argmax over all trailing axes.

    Ties resolve to the first maximum when scanning left to right.

    Args:
        scores: shape (n, ...) e.g. (n, num_classes) or (n, num_classes, 1, 1)

    Returns:
        int array of shape (n,)
    """

    scores = np.asarray(scores)
    return np.argmax(scores.reshape(scores.shape[0], -1), axis=1)


def batch_accuracy(predictions: np.ndarray, labels: np.ndarray) -> AccuracyResult:
    """Top-1 agreement between predicted scores and one-hot labels of the same size."""

    predictions = np.asarray(predictions)
    labels = np.asarray(labels)
    if predictions.shape[0] != labels.shape[0]:
        raise ConfigurationError(f"batch size mismatch: {predictions.shape[0]} predictions, {labels.shape[0]} labels")
    if predictions.size != labels.size:
        raise ConfigurationError(
            f"network outputs {predictions.shape} do not match {labels.shape} one-hot labels; "
            "check num_classes against the model"
        )
    correct = int(np.sum(argmax_first(predictions) == argmax_first(labels)))
    return AccuracyResult(correct=correct, total=int(labels.shape[0]))


def evaluate_accuracy(
    network: NetworkPort,
    *,
    batch_size: int,
    samples: SampleSet,
    encoder: BatchEncoder,
) -> AccuracyResult:
    """Score `samples` once, in order, in batches of `batch_size` (last one truncated)."""

    if samples.size == 0:
        raise DegenerateAccuracyError("cannot evaluate accuracy on an empty sample set")

    correct = 0
    offset = 0
    batch = None
    while True:
        batch = encoder.encode(samples, offset, batch_size, out=batch)
        if batch is None:
            break
        correct += batch_accuracy(network.infer_batch(batch.x), batch.y).correct
        offset += batch.length

    return AccuracyResult(correct=correct, total=offset)
