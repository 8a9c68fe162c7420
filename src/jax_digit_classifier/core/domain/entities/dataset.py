from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from jax_digit_classifier.core.domain.errors.training import ConfigurationError

ImageShape = tuple[int, int, int]  # (channels, width, height)


@dataclass(frozen=True, eq=False)
class SampleImage:
    """A decoded image: shape plus a flat uint8 pixel buffer."""

    channels: int
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        data = np.ascontiguousarray(self.data, dtype=np.uint8).reshape(-1)
        expected = self.channels * self.width * self.height
        if data.size != expected:
            raise ConfigurationError(
                f"image buffer has {data.size} bytes, expected {expected} "
                f"for shape {(self.channels, self.width, self.height)}"
            )
        object.__setattr__(self, "data", data)

    @property
    def shape(self) -> ImageShape:
        return (self.channels, self.width, self.height)

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> SampleImage:
        """Build from a (height, width) or (channels, height, width) uint8 array."""

        arr = np.asarray(pixels, dtype=np.uint8)
        if arr.ndim == 2:
            arr = arr[None, :, :]
        if arr.ndim != 3:
            raise ConfigurationError(f"expected a 2D or 3D pixel array, got shape {arr.shape}")
        channels, height, width = arr.shape
        return cls(channels=channels, width=width, height=height, data=arr.reshape(-1))


class SampleSet:
    """Images and class labels held in parallel, ordered sequences.

    All images share one (channels, width, height) shape. The set is immutable;
    shuffling produces a permuted copy.
    """

    def __init__(self, images: Sequence[SampleImage], labels: Sequence[int]) -> None:
        if len(images) != len(labels):
            raise ConfigurationError(
                f"image/label count mismatch: {len(images)} images, {len(labels)} labels"
            )
        shapes = {img.shape for img in images}
        if len(shapes) > 1:
            raise ConfigurationError(f"images must share one shape, got {sorted(shapes)}")
        self._images = tuple(images)
        self._labels = tuple(int(label) for label in labels)

    @property
    def images(self) -> tuple[SampleImage, ...]:
        return self._images

    @property
    def labels(self) -> tuple[int, ...]:
        return self._labels

    @property
    def size(self) -> int:
        return len(self._images)

    def __len__(self) -> int:
        return self.size

    @property
    def shape(self) -> ImageShape:
        if not self._images:
            raise ConfigurationError("an empty sample set has no image shape")
        return self._images[0].shape

    def take(self, start: int, stop: int) -> SampleSet:
        return SampleSet(self._images[start:stop], self._labels[start:stop])

    def permuted(self, order: Sequence[int]) -> SampleSet:
        return SampleSet([self._images[i] for i in order], [self._labels[i] for i in order])

    def class_counts(self) -> dict[int, int]:
        counts: dict[int, int] = {}
        for label in self._labels:
            counts[label] = counts.get(label, 0) + 1
        return dict(sorted(counts.items()))

    @classmethod
    def from_arrays(cls, images: np.ndarray, labels: np.ndarray) -> SampleSet:
        """Build from stacked uint8 arrays of shape (N, H, W) or (N, C, H, W)."""

        images = np.asarray(images)
        labels = np.asarray(labels).reshape(-1)
        return cls([SampleImage.from_array(img) for img in images], labels.tolist())
