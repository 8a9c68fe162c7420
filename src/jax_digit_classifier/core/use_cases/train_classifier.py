from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from jax_digit_classifier.core.domain.commands.train import TrainCommand
from jax_digit_classifier.core.domain.entities.base import EncodedBatch
from jax_digit_classifier.core.domain.entities.dataset import SampleSet
from jax_digit_classifier.core.domain.entities.model import TopologyFactory, topology_for
from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.domain.utils.batching import BatchEncoder
from jax_digit_classifier.core.domain.utils.metrics import evaluate_accuracy
from jax_digit_classifier.core.domain.utils.schedule import LearningRateState
from jax_digit_classifier.core.domain.utils.splitting import shuffle_and_split
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.ports.network import NetworkPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort
from jax_digit_classifier.core.use_cases.model_lifecycle import NUM_CLASSES_KEY, ModelLifecycle


class TrainingState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONVERGED = "converged"
    BATCH_LIMIT_REACHED = "batch_limit_reached"
    EPOCH_LIMIT_REACHED = "epoch_limit_reached"


@dataclass(frozen=True)
class TrainResult:
    network: NetworkPort
    stop_reason: TrainingState
    final_accuracy: float
    epochs_completed: int
    global_batches: int
    learning_rate: float
    saved: bool
    train_size: int
    valid_size: int
    history: list[dict[str, Any]] = field(default_factory=list)


def _validate(command: TrainCommand) -> None:
    if command.epochs < 1:
        raise ConfigurationError(f"epochs must be >= 1, got {command.epochs}")
    if command.batch_size < 1 or command.eval_batch_size < 1:
        raise ConfigurationError(
            f"batch sizes must be >= 1, got {command.batch_size}/{command.eval_batch_size}"
        )
    if command.max_batches < 1:
        raise ConfigurationError(f"max_batches must be >= 1, got {command.max_batches}")
    if command.eval_every_batches < 1:
        raise ConfigurationError(f"eval_every_batches must be >= 1, got {command.eval_every_batches}")
    if command.early_stopping_patience < 0:
        raise ConfigurationError(f"early_stopping_patience must be >= 0, got {command.early_stopping_patience}")


class TrainClassifierUseCase:
    """Mini-batch training loop with periodic validation.

    Idle -> Running(epoch, batch) -> one of Converged / BatchLimitReached /
    EpochLimitReached -> Idle. The terminal state is reported as
    `TrainResult.stop_reason`; `state` is back to IDLE once `run` returns.
    """

    def __init__(
        self,
        *,
        sample_source: SampleSourcePort,
        model_lifecycle: ModelLifecycle,
        metrics_sink: MetricsSinkPort | None = None,
        topology_factory: TopologyFactory | None = None,
    ) -> None:
        self._source = sample_source
        self._lifecycle = model_lifecycle
        self._metrics = metrics_sink
        self._topology_factory = topology_factory
        self.state = TrainingState.IDLE

    def _log(self, step: int, metrics: dict[str, Any]) -> None:
        if self._metrics:
            self._metrics.log(step=step, metrics=metrics)

    def _prepare(self, command: TrainCommand) -> tuple[SampleSet, SampleSet]:
        samples = self._source.load()
        if samples.size == 0:
            raise ConfigurationError(f"no samples found in {self._source.description}")
        train, valid = shuffle_and_split(samples, train_fraction=command.train_fraction, seed=command.seed)
        self._log(
            0,
            {
                "event": "data_loaded",
                "source": self._source.description,
                "train_size": train.size,
                "valid_size": valid.size,
                "image_shape": list(samples.shape),
            },
        )
        return train, valid

    def run(self, command: TrainCommand) -> TrainResult:
        _validate(command)
        lr = LearningRateState(
            initial=command.learning_rate,
            decay_step=command.decay_step,
            minimum=command.min_learning_rate,
        )
        encoder = BatchEncoder(num_classes=command.num_classes, input_scale=command.input_scale)

        # All malformed-input checks happen here, before the first batch.
        train, valid = self._prepare(command)
        for labels in (train.labels, valid.labels):
            bad = [y for y in labels if not 0 <= y < command.num_classes]
            if bad:
                raise ConfigurationError(
                    f"labels must be in [0, {command.num_classes}), found {sorted(set(bad))}"
                )

        if self._topology_factory is not None:
            topology = self._topology_factory(command.num_classes)
        else:
            topology = topology_for(command.model_kind, command.num_classes)
        channels, width, height = train.shape
        network = self._lifecycle.build(topology, (command.batch_size, channels, width, height))
        network.properties[NUM_CLASSES_KEY] = str(command.num_classes)
        self._log(
            0,
            {
                "event": "network_built",
                "topology": topology.name,
                "loss": topology.loss,
                "layers": len(topology.layers),
                "input_shape": [command.batch_size, channels, width, height],
                "learning_rate": lr.value,
                "decay_step": command.decay_step,
                "min_learning_rate": lr.minimum,
                "epochs": command.epochs,
                "eval_every_batches": command.eval_every_batches,
            },
        )

        def validate() -> float:
            return evaluate_accuracy(
                network, batch_size=command.eval_batch_size, samples=valid, encoder=encoder
            ).accuracy

        history: list[dict[str, Any]] = []
        global_batches = 0
        epochs_completed = 0
        best_acc: float | None = None
        epochs_since_improvement = 0
        stop_reason = TrainingState.EPOCH_LIMIT_REACHED

        self.state = TrainingState.RUNNING
        for epoch in range(1, command.epochs + 1):
            offset = 0
            batch: EncodedBatch | None = None
            loss = float("nan")
            while global_batches < command.max_batches:
                batch = encoder.encode(train, offset, command.batch_size, out=batch)
                if batch is None:
                    break
                loss = float(network.train_batch(batch.x, batch.y, lr.value))
                offset += batch.length
                global_batches += 1

                if global_batches % command.eval_every_batches == 0:
                    lr.decay()
                    acc = validate()
                    self._log(
                        global_batches,
                        {
                            "epoch": epoch,
                            "sample": offset,
                            "train_size": train.size,
                            "train/lr": lr.value,
                            "train/loss": loss,
                            "valid/acc": acc,
                        },
                    )

            if offset < train.size:
                # Batch limit hit mid-epoch.
                stop_reason = TrainingState.BATCH_LIMIT_REACHED
                break

            epochs_completed = epoch
            acc = validate()
            epoch_summary = {
                "epoch": epoch,
                "global_step": global_batches,
                "train/lr": lr.value,
                "train/loss": loss,
                "valid/acc": acc,
                "best/acc": max(acc, best_acc) if best_acc is not None else acc,
            }
            history.append(epoch_summary)
            self._log(global_batches, epoch_summary)

            if best_acc is None or acc > best_acc:
                best_acc = acc
                epochs_since_improvement = 0
            else:
                epochs_since_improvement += 1

            if command.early_stopping_patience and epochs_since_improvement >= command.early_stopping_patience:
                stop_reason = TrainingState.CONVERGED
                self._log(
                    global_batches,
                    {
                        "event": "early_stop",
                        "epoch": epoch,
                        "best/acc": best_acc,
                        "patience": int(command.early_stopping_patience),
                    },
                )
                break

            if global_batches >= command.max_batches and epoch < command.epochs:
                stop_reason = TrainingState.BATCH_LIMIT_REACHED
                break

        self.state = stop_reason
        final_accuracy = validate()
        self._log(
            global_batches,
            {
                "event": "final",
                "stop_reason": stop_reason.value,
                "valid/acc": final_accuracy,
                "epochs_completed": epochs_completed,
                "global_step": global_batches,
            },
        )

        saved = False
        if command.model_path:
            saved = self._lifecycle.save(
                network, command.model_path, input_scale=command.input_scale, step=global_batches
            )

        self.state = TrainingState.IDLE
        return TrainResult(
            network=network,
            stop_reason=stop_reason,
            final_accuracy=final_accuracy,
            epochs_completed=epochs_completed,
            global_batches=global_batches,
            learning_rate=lr.value,
            saved=saved,
            train_size=train.size,
            valid_size=valid.size,
            history=history,
        )
