from __future__ import annotations

import math

import numpy as np

from jax_digit_classifier.core.domain.entities.dataset import SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError


def shuffle_samples(samples: SampleSet, *, seed: int | None = None) -> SampleSet:
    """Return a copy of `samples` with images and labels permuted in lock-step.

    `seed=None` draws fresh OS entropy; pass a seed for a reproducible order.
    """

    if len(samples.images) != len(samples.labels):
        raise ConfigurationError(
            f"image/label count mismatch: {len(samples.images)} images, {len(samples.labels)} labels"
        )
    order = np.random.default_rng(seed).permutation(samples.size)
    return samples.permuted(order.tolist())


def split_samples(samples: SampleSet, *, train_fraction: float) -> tuple[SampleSet, SampleSet]:
    """Return (train, valid): the first floor(N * train_fraction) samples, then the rest."""

    if not 0.0 < train_fraction < 1.0:
        raise ConfigurationError(f"train_fraction must be in (0, 1), got {train_fraction}")

    n = samples.size
    n_train = int(math.floor(n * train_fraction))
    if n_train == 0 or n_train == n:
        raise ConfigurationError(
            f"splitting {n} samples at {train_fraction} leaves an empty "
            f"{'training' if n_train == 0 else 'validation'} subset"
        )
    return samples.take(0, n_train), samples.take(n_train, n)


def shuffle_and_split(
    samples: SampleSet, *, train_fraction: float, seed: int | None = None
) -> tuple[SampleSet, SampleSet]:
    return split_samples(shuffle_samples(samples, seed=seed), train_fraction=train_fraction)
