from __future__ import annotations

import os

# Ensure tests run on CPU-only machines even if JAX is installed with CUDA extras.
os.environ.setdefault("JAX_PLATFORMS", "cpu")

import numpy as np
import pytest
from PIL import Image

from jax_digit_classifier.adapters.right.data_loaders import NpzSampleSource
from jax_digit_classifier.adapters.right.image_decoder_pillow import PillowImageDecoder
from jax_digit_classifier.adapters.right.networks.jax_network import JaxNetworkFactory
from jax_digit_classifier.core.domain.commands.evaluate import EvaluateCommand
from jax_digit_classifier.core.domain.commands.predict import PredictCommand
from jax_digit_classifier.core.domain.commands.train import TrainCommand
from jax_digit_classifier.core.domain.entities.model import RELU, SOFTMAX, Topology, conv, dense, max_pool
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, ModelIOError
from jax_digit_classifier.core.use_cases.evaluate_classifier import EvaluateClassifierUseCase
from jax_digit_classifier.core.use_cases.model_lifecycle import ModelLifecycle
from jax_digit_classifier.core.use_cases.predict_images import PredictImagesUseCase
from jax_digit_classifier.core.use_cases.train_classifier import TrainClassifierUseCase, TrainingState


def _tiny_topology(num_classes: int) -> Topology:
    return Topology(
        name="tiny",
        loss="cross_entropy",
        layers=(conv(4, 3), RELU, max_pool(2, 2), dense(num_classes), SOFTMAX),
    )


def _bars(n: int, seed: int) -> tuple[np.ndarray, np.ndarray]:
    """8x8 images with a bright horizontal bar whose row band encodes the class."""

    rng = np.random.default_rng(seed)
    y = np.arange(n) % 3
    x = rng.integers(0, 30, size=(n, 8, 8), dtype=np.uint8)
    for i, label in enumerate(y):
        x[i, 1 + 2 * label : 3 + 2 * label, :] = 250
    return x, y


class _Events:
    def __init__(self) -> None:
        self.records: list[dict] = []

    def log(self, *, step: int, metrics: dict) -> None:
        self.records.append(dict(metrics))

    def named(self, event: str) -> list[dict]:
        return [r for r in self.records if r.get("event") == event]


@pytest.fixture()
def trained_model(tmp_path):
    x_train, y_train = _bars(90, seed=0)
    x_test, y_test = _bars(30, seed=1)
    npz = tmp_path / "bars.npz"
    np.savez(npz, x_train=x_train, y_train=y_train, x_test=x_test, y_test=y_test)

    lifecycle = ModelLifecycle(network_factory=JaxNetworkFactory(seed=0))
    use_case = TrainClassifierUseCase(
        sample_source=NpzSampleSource(path=str(npz), split="train"),
        model_lifecycle=lifecycle,
        topology_factory=_tiny_topology,
    )
    model_path = str(tmp_path / "models" / "bars.safetensors")
    result = use_case.run(
        TrainCommand(
            num_classes=3,
            epochs=20,
            batch_size=8,
            train_fraction=0.8,
            learning_rate=0.2,
            decay_step=0.01,
            min_learning_rate=0.05,
            eval_every_batches=5,
            eval_batch_size=16,
            model_path=model_path,
        )
    )
    return result, npz, model_path


def test_train_classifier_learns_and_saves(trained_model) -> None:
    result, _, model_path = trained_model

    assert result.stop_reason is TrainingState.EPOCH_LIMIT_REACHED
    assert result.epochs_completed == 20
    assert result.saved
    assert os.path.isfile(model_path)
    assert result.final_accuracy > 0.5
    assert result.history[-1]["epoch"] == 20


def test_evaluate_classifier_scores_held_out_split(trained_model) -> None:
    _, npz, model_path = trained_model
    events = _Events()
    use_case = EvaluateClassifierUseCase(
        sample_source=NpzSampleSource(path=str(npz), split="test"),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
        metrics_sink=events,
    )

    result = use_case.run(EvaluateCommand(model_path=model_path, num_classes=3, batch_size=7))

    assert result.total == 30
    assert result.accuracy > 0.5
    assert result.persisted_input_scale == result.input_scale == 1.0 / 256.0
    assert not events.named("input_scale_mismatch")
    assert any("test/acc" in r for r in events.records)


def test_evaluate_classifier_missing_model(tmp_path, trained_model) -> None:
    _, npz, _ = trained_model
    use_case = EvaluateClassifierUseCase(
        sample_source=NpzSampleSource(path=str(npz), split="test"),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
    )
    with pytest.raises(ModelIOError):
        use_case.run(EvaluateCommand(model_path=str(tmp_path / "missing.safetensors"), num_classes=3))


def test_predict_images_labels_files_in_order(tmp_path, trained_model) -> None:
    _, _, model_path = trained_model
    x, y = _bars(6, seed=2)
    paths = []
    for i, img in enumerate(x):
        p = tmp_path / f"digit_{i}.png"
        Image.fromarray(img).save(p)
        paths.append(str(p))
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"nope")
    paths.insert(2, str(broken))

    events = _Events()
    use_case = PredictImagesUseCase(
        image_decoder=PillowImageDecoder(),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
        metrics_sink=events,
    )
    results = use_case.run(
        PredictCommand(model_path=model_path, paths=tuple(paths), batch_size=4, width=8, height=8, input_scale=None)
    )

    assert [r.path for r in results] == paths
    assert not results[2].ok and results[2].error
    good = [r for r in results if r.ok]
    assert len(good) == 6
    assert all(0 <= r.label < 3 and 0.0 <= r.score <= 1.0 + 1e-6 for r in good)
    assert len(events.named("image_decode_failed")) == 1
    assert len(events.named("prediction")) == 6


def test_predict_images_reports_scale_mismatch(tmp_path, trained_model) -> None:
    _, _, model_path = trained_model
    p = tmp_path / "one.png"
    Image.fromarray(_bars(1, seed=3)[0][0]).save(p)

    events = _Events()
    use_case = PredictImagesUseCase(
        image_decoder=PillowImageDecoder(),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
        metrics_sink=events,
    )
    results = use_case.run(PredictCommand(model_path=model_path, paths=(str(p),), width=8, height=8))

    assert results[0].ok
    assert events.named("input_scale_mismatch")[0]["requested"] == 1.0 / 255.0


def test_evaluate_classifier_uses_recorded_class_count(trained_model) -> None:
    _, npz, model_path = trained_model
    use_case = EvaluateClassifierUseCase(
        sample_source=NpzSampleSource(path=str(npz), split="test"),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
    )

    result = use_case.run(EvaluateCommand(model_path=model_path))

    assert result.total == 30


def test_evaluate_classifier_rejects_class_count_mismatch(trained_model) -> None:
    _, npz, model_path = trained_model
    use_case = EvaluateClassifierUseCase(
        sample_source=NpzSampleSource(path=str(npz), split="test"),
        model_lifecycle=ModelLifecycle(network_factory=JaxNetworkFactory()),
    )
    with pytest.raises(ConfigurationError):
        use_case.run(EvaluateCommand(model_path=model_path, num_classes=10))
