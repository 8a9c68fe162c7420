from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from jax_digit_classifier.core.domain.commands.predict import PredictCommand
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, ImageDecodeError, ModelIOError
from jax_digit_classifier.core.domain.utils.batching import IMAGE_INPUT_SCALE, BatchEncoder
from jax_digit_classifier.core.domain.utils.metrics import argmax_first
from jax_digit_classifier.core.ports.image_decoder import ImageDecoderPort
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.use_cases.model_lifecycle import NUM_CLASSES_KEY, ModelLifecycle


@dataclass(frozen=True)
class ImagePrediction:
    path: str
    label: int | None
    score: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.label is not None


class PredictImagesUseCase:
    """Labels arbitrary image files with a persisted model.

    Files that cannot be decoded get an ImagePrediction with `error` set; the
    remaining files are still scored.
    """

    def __init__(
        self,
        *,
        image_decoder: ImageDecoderPort,
        model_lifecycle: ModelLifecycle,
        metrics_sink: MetricsSinkPort | None = None,
    ) -> None:
        self._decoder = image_decoder
        self._lifecycle = model_lifecycle
        self._metrics = metrics_sink

    def _log(self, step: int, metrics: dict[str, Any]) -> None:
        if self._metrics:
            self._metrics.log(step=step, metrics=metrics)

    def _prepare(self, path: str, command: PredictCommand) -> np.ndarray:
        pixels = self._decoder.decode_grayscale(path)
        pixels = self._decoder.resize(pixels, command.width, command.height)
        return self._decoder.binarize_threshold(pixels, command.threshold)

    def run(self, command: PredictCommand) -> list[ImagePrediction]:
        if command.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {command.batch_size}")
        if command.width < 1 or command.height < 1:
            raise ConfigurationError(f"image size must be positive, got {command.width}x{command.height}")

        network = self._lifecycle.load(command.model_path)
        if network is None:
            raise ModelIOError(f"could not load model from {command.model_path}")

        persisted = self._lifecycle.persisted_input_scale(network)
        scale = command.input_scale
        if scale is None:
            scale = persisted if persisted is not None else IMAGE_INPUT_SCALE
        elif persisted is not None and not math.isclose(persisted, scale, rel_tol=1e-9):
            self._log(0, {"event": "input_scale_mismatch", "model": persisted, "requested": scale})

        num_classes = int(network.properties.get(NUM_CLASSES_KEY, "0") or 0)
        encoder = BatchEncoder(num_classes=max(num_classes, 2), input_scale=scale)

        results: list[ImagePrediction] = []
        paths = list(command.paths)
        for start in range(0, len(paths), command.batch_size):
            chunk = paths[start : start + command.batch_size]
            decoded: list[tuple[str, np.ndarray]] = []
            for path in chunk:
                try:
                    decoded.append((path, self._prepare(path, command)))
                except ImageDecodeError as exc:
                    results.append(ImagePrediction(path=path, label=None, error=str(exc)))
                    self._log(start, {"event": "image_decode_failed", "path": path, "error": str(exc)})
            if not decoded:
                continue

            batch = encoder.encode_pixels([pixels for _, pixels in decoded])
            scores = np.asarray(network.infer_batch(batch.x))
            scores = scores.reshape(scores.shape[0], -1)
            labels = argmax_first(scores)
            for (path, _), label, row in zip(decoded, labels.tolist(), scores, strict=True):
                pred = ImagePrediction(path=path, label=int(label), score=float(row[label]))
                results.append(pred)
                self._log(start, {"event": "prediction", "path": path, "label": pred.label, "score": pred.score})

        # Report in input order.
        order = {p: i for i, p in enumerate(paths)}
        results.sort(key=lambda r: order[r.path])
        return results
