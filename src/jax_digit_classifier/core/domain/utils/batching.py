from __future__ import annotations

from collections.abc import Iterator, Sequence

import numpy as np

from jax_digit_classifier.core.domain.entities.base import EncodedBatch
from jax_digit_classifier.core.domain.entities.dataset import SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, EncodingError

# Pixel scaling used by training, validation and test-set scoring.
TRAIN_INPUT_SCALE = 1.0 / 256.0
# Pixel scaling used when labeling ad-hoc image files. Differs from
# TRAIN_INPUT_SCALE; the scale a model was trained with is saved in its properties.
IMAGE_INPUT_SCALE = 1.0 / 255.0


class BatchEncoder:
    """Turns a window of samples into dense float32 input/label tensors.

    `encode` returns None once `offset` reaches the end of the set; the last
    window is truncated to the remaining samples. Callers detect the end of a
    pass through that truncation followed by None, not through a sentinel.
    """

    def __init__(self, *, num_classes: int, input_scale: float = TRAIN_INPUT_SCALE) -> None:
        if num_classes <= 1:
            raise ConfigurationError(f"num_classes must be >= 2, got {num_classes}")
        if not input_scale > 0.0:
            raise ConfigurationError(f"input_scale must be > 0, got {input_scale}")
        self._num_classes = int(num_classes)
        self._scale = np.float32(input_scale)

    @property
    def num_classes(self) -> int:
        return self._num_classes

    @property
    def input_scale(self) -> float:
        return float(self._scale)

    def _window(self, samples: SampleSet, offset: int, length: int) -> int | None:
        if offset < 0 or length <= 0:
            raise ValueError(f"offset must be >= 0 and length > 0, got offset={offset} length={length}")
        if offset >= samples.size:
            return None
        return min(length, samples.size - offset)

    def _fill_inputs(self, samples: SampleSet, offset: int, n: int, x: np.ndarray) -> None:
        for i in range(n):
            img = samples.images[offset + i]
            x[i] = img.data.reshape(img.shape).astype(np.float32) * self._scale

    def _window_labels(self, samples: SampleSet, offset: int, n: int) -> list[int]:
        labels = list(samples.labels[offset : offset + n])
        for i, label in enumerate(labels):
            if not 0 <= label < self._num_classes:
                raise EncodingError(
                    f"label {label} of sample {offset + i} is outside [0, {self._num_classes})"
                )
        return labels

    def _fill_labels(self, labels: list[int], y: np.ndarray) -> None:
        y.fill(0.0)
        for i, label in enumerate(labels):
            y[i, label, 0, 0] = 1.0

    def encode(
        self,
        samples: SampleSet,
        offset: int,
        length: int,
        *,
        out: EncodedBatch | None = None,
    ) -> EncodedBatch | None:
        """Encode samples[offset:offset+length] with one-hot labels.

        `out` is overwritten and returned when it already holds exactly the
        number of samples being encoded; otherwise new buffers are allocated.
        """

        n = self._window(samples, offset, length)
        if n is None:
            return None
        # Checked before any buffer is written, so a rejected window leaves `out` intact.
        labels = self._window_labels(samples, offset, n)

        channels, width, height = samples.shape
        if (
            out is not None
            and out.y is not None
            and out.x.shape == (n, channels, width, height)
            and out.y.shape == (n, self._num_classes, 1, 1)
        ):
            x, y = out.x, out.y
        else:
            x = np.empty((n, channels, width, height), dtype=np.float32)
            y = np.empty((n, self._num_classes, 1, 1), dtype=np.float32)

        self._fill_labels(labels, y)
        self._fill_inputs(samples, offset, n, x)
        return EncodedBatch(x=x, y=y, offset=offset)

    def encode_inputs(self, samples: SampleSet, offset: int, length: int) -> EncodedBatch | None:
        """Like `encode` but without a label tensor."""

        n = self._window(samples, offset, length)
        if n is None:
            return None
        x = np.empty((n, *samples.shape), dtype=np.float32)
        self._fill_inputs(samples, offset, n, x)
        return EncodedBatch(x=x, y=None, offset=offset)

    def encode_pixels(self, pixels: Sequence[np.ndarray]) -> EncodedBatch:
        """Encode already-decoded (height, width) grayscale arrays.

        The flat buffer of each image is laid out as (1, width, height), the same
        way SampleImage buffers are.
        """

        if not pixels:
            raise ConfigurationError("cannot encode an empty list of images")
        arrays = [np.asarray(p, dtype=np.uint8) for p in pixels]
        shapes = {a.shape for a in arrays}
        if len(shapes) != 1:
            raise ConfigurationError(f"images must share one shape, got {sorted(shapes)}")
        height, width = arrays[0].shape
        x = np.stack([a.reshape(1, width, height) for a in arrays]).astype(np.float32) * self._scale
        return EncodedBatch(x=x, y=None)

    def iter_batches(self, samples: SampleSet, batch_size: int, *, labeled: bool = True) -> Iterator[EncodedBatch]:
        """Yield consecutive batches until the set is exhausted."""

        offset = 0
        while True:
            if labeled:
                batch = self.encode(samples, offset, batch_size)
            else:
                batch = self.encode_inputs(samples, offset, batch_size)
            if batch is None:
                return
            yield batch
            offset += batch.length
