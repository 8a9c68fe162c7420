from __future__ import annotations

import math
from dataclasses import dataclass

from jax_digit_classifier.core.domain.commands.evaluate import EvaluateCommand
from jax_digit_classifier.core.domain.entities.base import AccuracyResult
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, ModelIOError
from jax_digit_classifier.core.domain.utils.batching import BatchEncoder
from jax_digit_classifier.core.domain.utils.metrics import evaluate_accuracy
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort
from jax_digit_classifier.core.use_cases.model_lifecycle import NUM_CLASSES_KEY, ModelLifecycle


@dataclass(frozen=True)
class EvaluationResult:
    accuracy: float
    correct: int
    total: int
    input_scale: float
    persisted_input_scale: float | None


def _resolve_num_classes(recorded: str | None, requested: int | None) -> int:
    """Class count for label encoding; an explicit request must agree with the model."""

    try:
        stored = int(recorded) if recorded else None
    except ValueError:
        stored = None
    if requested is None:
        if stored is None:
            raise ConfigurationError("the model does not record num_classes; pass it explicitly")
        return stored
    if stored is not None and stored != requested:
        raise ConfigurationError(f"model was trained for {stored} classes, got num_classes={requested}")
    return requested


class EvaluateClassifierUseCase:
    """Scores a held-out sample set with a persisted model."""

    def __init__(
        self,
        *,
        sample_source: SampleSourcePort,
        model_lifecycle: ModelLifecycle,
        metrics_sink: MetricsSinkPort | None = None,
    ) -> None:
        self._source = sample_source
        self._lifecycle = model_lifecycle
        self._metrics = metrics_sink

    def run(self, command: EvaluateCommand) -> EvaluationResult:
        if command.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {command.batch_size}")
        samples = self._source.load()
        if samples.size == 0:
            raise ConfigurationError(f"no samples found in {self._source.description}")

        network = self._lifecycle.load(command.model_path)
        if network is None:
            raise ModelIOError(f"could not load model from {command.model_path}")
        num_classes = _resolve_num_classes(network.properties.get(NUM_CLASSES_KEY), command.num_classes)
        encoder = BatchEncoder(num_classes=num_classes, input_scale=command.input_scale)

        persisted = self._lifecycle.persisted_input_scale(network)
        if self._metrics:
            self._metrics.log(
                step=0,
                metrics={
                    "event": "data_loaded",
                    "source": self._source.description,
                    "test_size": samples.size,
                    "image_shape": list(samples.shape),
                },
            )
            if persisted is not None and not math.isclose(persisted, command.input_scale, rel_tol=1e-9):
                self._metrics.log(
                    step=0,
                    metrics={"event": "input_scale_mismatch", "model": persisted, "requested": command.input_scale},
                )

        result: AccuracyResult = evaluate_accuracy(
            network, batch_size=command.batch_size, samples=samples, encoder=encoder
        )
        if self._metrics:
            self._metrics.log(
                step=0,
                metrics={"test/acc": result.accuracy, "test/correct": result.correct, "test/total": result.total},
            )
        return EvaluationResult(
            accuracy=result.accuracy,
            correct=result.correct,
            total=result.total,
            input_scale=command.input_scale,
            persisted_input_scale=persisted,
        )
