from __future__ import annotations

import numpy as np
import pytest

from jax_digit_classifier.core.domain.commands.train import TrainCommand
from jax_digit_classifier.core.domain.entities.dataset import SampleImage, SampleSet
from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.ports.network import NetworkFactoryPort, NetworkPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort
from jax_digit_classifier.core.use_cases.model_lifecycle import ModelLifecycle
from jax_digit_classifier.core.use_cases.train_classifier import TrainClassifierUseCase, TrainingState

NUM_CLASSES = 3


class _RecordingNetwork(NetworkPort):
    """Records every call; always predicts class 0 so validation accuracy never changes."""

    def __init__(self, *, save_ok: bool = True) -> None:
        self._properties: dict[str, str] = {}
        self._input_shape = None
        self.layers: list = []
        self.loss_kind = None
        self.train_sizes: list[int] = []
        self.learning_rates: list[float] = []
        self.infer_calls = 0
        self.saved_paths: list[str] = []
        self._save_ok = save_ok

    @property
    def properties(self) -> dict[str, str]:
        return self._properties

    @property
    def input_shape(self):
        return self._input_shape

    def set_input_shape(self, shape) -> None:
        self._input_shape = shape

    def set_loss_kind(self, kind) -> None:
        self.loss_kind = kind

    def add_layer(self, spec) -> None:
        self.layers.append(spec)

    def train_batch(self, x, y, learning_rate) -> float:
        assert x.shape[0] == y.shape[0]
        self.train_sizes.append(int(x.shape[0]))
        self.learning_rates.append(float(learning_rate))
        return 1.0

    def infer_batch(self, x):
        self.infer_calls += 1
        scores = np.zeros((x.shape[0], NUM_CLASSES), dtype=np.float32)
        scores[:, 0] = 1.0
        return scores

    def save_model(self, path: str) -> bool:
        self.saved_paths.append(path)
        return self._save_ok

    def load_model(self, path: str) -> bool:
        return False


class _OneNetworkFactory(NetworkFactoryPort):
    def __init__(self, network: _RecordingNetwork) -> None:
        self.network = network
        self.created = 0

    def create(self) -> _RecordingNetwork:
        self.created += 1
        return self.network


class _TinySamples(SampleSourcePort):
    def __init__(self, labels: list[int], *, side: int = 28) -> None:
        rng = np.random.default_rng(0)
        self._samples = SampleSet(
            [SampleImage.from_array(rng.integers(0, 256, size=(side, side), dtype=np.uint8)) for _ in labels],
            labels,
        )

    @property
    def description(self) -> str:
        return "tiny"

    def load(self) -> SampleSet:
        return self._samples


class _ListSink:
    def __init__(self) -> None:
        self.records: list[tuple[int, dict]] = []

    def log(self, *, step: int, metrics: dict) -> None:
        self.records.append((step, dict(metrics)))

    def events(self) -> list[str]:
        return [m["event"] for _, m in self.records if "event" in m]


def _use_case(network: _RecordingNetwork, labels: list[int], sink: _ListSink | None = None):
    factory = _OneNetworkFactory(network)
    lifecycle = ModelLifecycle(network_factory=factory, metrics_sink=sink)
    use_case = TrainClassifierUseCase(
        sample_source=_TinySamples(labels), model_lifecycle=lifecycle, metrics_sink=sink
    )
    return use_case, factory


def _command(**overrides) -> TrainCommand:
    base = dict(
        num_classes=NUM_CLASSES,
        epochs=2,
        batch_size=16,
        train_fraction=0.8,
        learning_rate=0.1,
        decay_step=0.002,
        min_learning_rate=0.0001,
        eval_every_batches=2,
        eval_batch_size=8,
        seed=0,
    )
    base.update(overrides)
    return TrainCommand(**base)


def _labels(n: int) -> list[int]:
    return [i % NUM_CLASSES for i in range(n)]


def test_epochs_run_to_completion_with_periodic_decay() -> None:
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50))

    result = use_case.run(_command())

    # 50 samples -> 40 train / 10 valid; 40 at batch 16 -> 16, 16, 8 per epoch
    assert (result.train_size, result.valid_size) == (40, 10)
    assert network.train_sizes == [16, 16, 8, 16, 16, 8]
    assert network.learning_rates == pytest.approx([0.1, 0.1, 0.098, 0.098, 0.096, 0.096])
    assert result.learning_rate == pytest.approx(0.094)
    assert result.global_batches == 6
    assert result.epochs_completed == 2
    assert result.stop_reason is TrainingState.EPOCH_LIMIT_REACHED
    assert [h["epoch"] for h in result.history] == [1, 2]
    assert use_case.state is TrainingState.IDLE


def test_network_is_built_from_the_topology() -> None:
    network = _RecordingNetwork()
    use_case, factory = _use_case(network, _labels(50))

    use_case.run(_command(epochs=1))

    assert factory.created == 1
    assert network.input_shape == (16, 1, 28, 28)
    assert network.loss_kind == "cross_entropy"
    assert network.layers[-1].kind == "softmax"
    assert network.properties["num_classes"] == str(NUM_CLASSES)
    assert network.properties["topology"] == "conv"


def test_batch_limit_stops_mid_epoch() -> None:
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50))

    result = use_case.run(_command(epochs=5, max_batches=4))

    assert network.train_sizes == [16, 16, 8, 16]
    assert result.global_batches == 4
    assert result.stop_reason is TrainingState.BATCH_LIMIT_REACHED
    assert result.epochs_completed == 1


def test_batch_limit_on_an_epoch_boundary() -> None:
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50))

    result = use_case.run(_command(epochs=5, max_batches=3))

    assert result.global_batches == 3
    assert result.epochs_completed == 1
    assert result.stop_reason is TrainingState.BATCH_LIMIT_REACHED


def test_early_stopping_converges() -> None:
    sink = _ListSink()
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50), sink)

    result = use_case.run(_command(epochs=10, early_stopping_patience=2))

    # accuracy never improves after epoch 1
    assert result.stop_reason is TrainingState.CONVERGED
    assert result.epochs_completed == 3
    assert "early_stop" in sink.events()


def test_validation_accuracy_is_reported() -> None:
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50))

    result = use_case.run(_command(epochs=1))

    assert 0.0 <= result.final_accuracy <= 1.0
    assert all(0.0 <= h["valid/acc"] <= 1.0 for h in result.history)
    assert network.infer_calls > 0


def test_model_is_saved_with_its_input_scale() -> None:
    sink = _ListSink()
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50), sink)

    result = use_case.run(_command(epochs=1, model_path="model.safetensors"))

    assert result.saved is True
    assert network.saved_paths == ["model.safetensors"]
    assert float(network.properties["input_scale"]) == 1.0 / 256.0
    assert "model_saved" in sink.events()


def test_save_failure_is_reported_not_raised() -> None:
    sink = _ListSink()
    network = _RecordingNetwork(save_ok=False)
    use_case, _ = _use_case(network, _labels(50), sink)

    result = use_case.run(_command(epochs=1, model_path="/unwritable/model.safetensors"))

    assert result.saved is False
    assert result.network is network
    assert "model_save_failed" in sink.events()


def test_empty_source_fails_before_building() -> None:
    network = _RecordingNetwork()
    use_case, factory = _use_case(network, [])

    with pytest.raises(ConfigurationError):
        use_case.run(_command())
    assert factory.created == 0
    assert network.train_sizes == []


def test_out_of_range_label_fails_before_training() -> None:
    network = _RecordingNetwork()
    use_case, factory = _use_case(network, _labels(49) + [NUM_CLASSES])

    with pytest.raises(ConfigurationError):
        use_case.run(_command())
    assert factory.created == 0
    assert network.train_sizes == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"epochs": 0},
        {"batch_size": 0},
        {"max_batches": 0},
        {"eval_every_batches": 0},
        {"train_fraction": 1.0},
        {"learning_rate": 0.0},
        {"model_kind": "transformer"},
    ],
)
def test_invalid_settings_fail_before_training(overrides) -> None:
    network = _RecordingNetwork()
    use_case, _ = _use_case(network, _labels(50))

    with pytest.raises(ConfigurationError):
        use_case.run(_command(**overrides))
    assert network.train_sizes == []
