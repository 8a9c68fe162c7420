from __future__ import annotations

import os
import random
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import inject
import typer

# Default to CPU unless explicitly overridden by the user.
# This avoids noisy CUDA plugin initialization errors on machines without CUDA libraries.
os.environ.setdefault("JAX_PLATFORMS", "cpu")

from jax_digit_classifier.adapters.left.inject_config import configure_injections
from jax_digit_classifier.adapters.right.data_loaders.image_directory import ImageDirectorySampleSource, list_image_files
from jax_digit_classifier.adapters.right.data_loaders.npz_samples import NpzSampleSource
from jax_digit_classifier.adapters.right.image_decoder_pillow import PillowImageDecoder
from jax_digit_classifier.adapters.right.metrics_jsonl import CompositeMetricsSink, JsonlFileMetricsSink
from jax_digit_classifier.adapters.right.metrics_plotting import plot_metrics_from_logs
from jax_digit_classifier.adapters.right.metrics_stdout import StdoutMetricsSink
from jax_digit_classifier.adapters.right.networks.jax_network import JaxNetworkFactory
from jax_digit_classifier.core.domain.commands.evaluate import EvaluateCommand
from jax_digit_classifier.core.domain.commands.predict import PredictCommand
from jax_digit_classifier.core.domain.commands.train import TrainCommand
from jax_digit_classifier.core.domain.errors.training import DigitClassifierError
from jax_digit_classifier.core.domain.utils.batching import IMAGE_INPUT_SCALE, TRAIN_INPUT_SCALE
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort
from jax_digit_classifier.core.use_cases.evaluate_classifier import EvaluateClassifierUseCase
from jax_digit_classifier.core.use_cases.predict_images import PredictImagesUseCase
from jax_digit_classifier.core.use_cases.train_classifier import TrainClassifierUseCase

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _sample_source(
    *, data_dir: str, npz_path: str, split: str, width: int, height: int, decoder: PillowImageDecoder
) -> SampleSourcePort:
    if bool(data_dir) == bool(npz_path):
        raise typer.BadParameter("pass exactly one of --data-dir or --npz-path")
    if npz_path:
        return NpzSampleSource(path=npz_path, split=split)
    size = (width, height) if width > 0 and height > 0 else (None, None)
    return ImageDirectorySampleSource(root=data_dir, image_decoder=decoder, width=size[0], height=size[1])


def _metrics(log_path: str, run: str) -> MetricsSinkPort:
    stdout_metrics = StdoutMetricsSink()
    if not log_path:
        return stdout_metrics
    return CompositeMetricsSink(stdout_metrics, JsonlFileMetricsSink(path=log_path, run=run))


@app.command()
def train(
    data_dir: str = typer.Option("", help="Training images laid out as DIR/<class index>/<image>"),
    npz_path: str = typer.Option("", help="Alternatively, a .npz with x_train/y_train"),
    model_path: str = typer.Option("models/digit_conv.safetensors", help="Where to save the trained model ('' to skip)"),
    model_kind: str = typer.Option("conv", help="Topology to train: conv | mlp"),
    num_classes: int = typer.Option(11, min=2),
    width: int = typer.Option(0, min=0, help="If >0 (with --height), resize training images to this width"),
    height: int = typer.Option(0, min=0),
    epochs: int = typer.Option(10, min=1),
    batch_size: int = typer.Option(16, min=1),
    max_batches: int = typer.Option(10_000_000, min=1),
    lr: float = typer.Option(0.1, help="Initial learning rate"),
    decay_step: float = typer.Option(0.002, help="Subtracted from the learning rate every --eval-every batches"),
    min_lr: float = typer.Option(0.0001),
    eval_every: int = typer.Option(200, min=1, help="Validate (and decay the learning rate) every N batches"),
    eval_batch_size: int = typer.Option(128, min=1),
    train_fraction: float = typer.Option(0.9, min=0.0, max=1.0),
    patience: int = typer.Option(0, min=0, help="Early-stop after N epochs without validation improvement"),
    seed: int = typer.Option(0),
    log_path: str = typer.Option("", help="If set, append events as JSONL to this path (e.g. logs/train.jsonl)"),
) -> None:
    """Train a digit classifier and save it."""

    decoder = PillowImageDecoder()
    source = _sample_source(
        data_dir=data_dir, npz_path=npz_path, split="train", width=width, height=height, decoder=decoder
    )
    metrics = _metrics(log_path, run=f"train-{model_kind}")
    configure_injections(
        network_factory=JaxNetworkFactory(seed=seed),
        metrics_sink=metrics,
        image_decoder=decoder,
        sample_source=source,
    )

    cmd = TrainCommand(
        model_kind=model_kind,
        num_classes=num_classes,
        epochs=epochs,
        batch_size=batch_size,
        max_batches=max_batches,
        seed=seed,
        train_fraction=train_fraction,
        learning_rate=lr,
        decay_step=decay_step,
        min_learning_rate=min_lr,
        eval_every_batches=eval_every,
        eval_batch_size=eval_batch_size,
        input_scale=TRAIN_INPUT_SCALE,
        early_stopping_patience=patience,
        model_path=model_path,
    )
    metrics.log(step=0, metrics={"event": "run_start", "command": "train", **asdict(cmd)})

    use_case = inject.instance(TrainClassifierUseCase)
    try:
        result = use_case.run(cmd)
    except DigitClassifierError as exc:
        typer.echo(f"Training aborted: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Training finished ({result.stop_reason.value}) after {result.global_batches} batches")
    typer.echo(f"Final validation accuracy: {result.final_accuracy * 100.0:.4f}%")
    if model_path and not result.saved:
        typer.echo(f"Could not save model to {model_path}", err=True)
        raise typer.Exit(code=2)
    if result.saved:
        typer.echo(f"Model saved to {model_path}")


@app.command()
def test(
    model_path: str = typer.Option(..., help="Model written by `train`"),
    data_dir: str = typer.Option("", help="Test images laid out as DIR/<class index>/<image>"),
    npz_path: str = typer.Option("", help="Alternatively, a .npz with x_test/y_test"),
    num_classes: Optional[int] = typer.Option(None, min=2, help="Defaults to the class count saved with the model"),
    width: int = typer.Option(0, min=0),
    height: int = typer.Option(0, min=0),
    batch_size: int = typer.Option(64, min=1),
    log_path: str = typer.Option(""),
) -> None:
    """Score a held-out set with a saved model."""

    decoder = PillowImageDecoder()
    source = _sample_source(
        data_dir=data_dir, npz_path=npz_path, split="test", width=width, height=height, decoder=decoder
    )
    metrics = _metrics(log_path, run="test")
    configure_injections(
        network_factory=JaxNetworkFactory(),
        metrics_sink=metrics,
        image_decoder=decoder,
        sample_source=source,
    )

    use_case = inject.instance(EvaluateClassifierUseCase)
    try:
        result = use_case.run(
            EvaluateCommand(
                model_path=model_path,
                num_classes=num_classes,
                batch_size=batch_size,
                input_scale=TRAIN_INPUT_SCALE,
            )
        )
    except DigitClassifierError as exc:
        typer.echo(f"Test aborted: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Accuracy: {result.accuracy * 100.0:.4f}% ({result.correct}/{result.total})")


@app.command()
def predict(
    paths: list[Path] = typer.Argument(..., help="Image files, or directories to scan for images"),
    model_path: str = typer.Option(..., help="Model written by `train`"),
    batch_size: int = typer.Option(16, min=1),
    size: int = typer.Option(32, min=1, help="Images are resized to size x size"),
    threshold: int = typer.Option(127, min=0, max=255),
    use_model_scale: bool = typer.Option(
        False, "--use-model-scale", help="Scale pixels like the training run instead of by 1/255"
    ),
    shuffle: bool = typer.Option(False, help="Label files in random order"),
) -> None:
    """Label ad-hoc image files with a saved model."""

    files: list[str] = []
    for p in paths:
        files.extend(list_image_files(str(p)) if p.is_dir() else [str(p)])
    if shuffle:
        random.shuffle(files)
    if not files:
        raise typer.BadParameter("no image files found")

    decoder = PillowImageDecoder()
    configure_injections(
        network_factory=JaxNetworkFactory(),
        metrics_sink=StdoutMetricsSink(skip_events=("prediction",)),
        image_decoder=decoder,
    )

    use_case = inject.instance(PredictImagesUseCase)
    try:
        results = use_case.run(
            PredictCommand(
                model_path=model_path,
                paths=tuple(files),
                batch_size=batch_size,
                width=size,
                height=size,
                threshold=threshold,
                input_scale=None if use_model_scale else IMAGE_INPUT_SCALE,
            )
        )
    except DigitClassifierError as exc:
        typer.echo(f"Prediction aborted: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    for r in results:
        if r.ok:
            typer.echo(f"{r.path}\tlabel : {r.label}\tscore : {r.score:.4f}")
        else:
            typer.echo(f"{r.path}\terror : {r.error}", err=True)


@app.command(name="plot-metrics")
def plot_metrics(
    log_paths: list[Path] = typer.Argument(..., help="JSONL logs written with --log-path"),
    out: str = typer.Option("metrics.png", help="Output image path"),
    x_axis: str = typer.Option("step", help="step | epoch"),
    metric: list[str] = typer.Option([], help="Repeatable metric name, e.g. --metric valid/acc"),
    title: str = typer.Option(""),
) -> None:
    """Plot training curves from JSONL event logs."""

    try:
        saved = plot_metrics_from_logs(
            log_paths=list(log_paths),
            out_path=out,
            show=False,
            x_axis=x_axis,
            metrics=metric or None,
            title=title or None,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Wrote {saved}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
