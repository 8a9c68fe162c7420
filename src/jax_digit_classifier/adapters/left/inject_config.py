from __future__ import annotations

from typing import Optional

import inject

from jax_digit_classifier.core.ports.image_decoder import ImageDecoderPort
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.ports.network import NetworkFactoryPort
from jax_digit_classifier.core.ports.sample_source import SampleSourcePort
from jax_digit_classifier.core.use_cases.evaluate_classifier import \
    EvaluateClassifierUseCase
from jax_digit_classifier.core.use_cases.model_lifecycle import ModelLifecycle
from jax_digit_classifier.core.use_cases.predict_images import \
    PredictImagesUseCase
from jax_digit_classifier.core.use_cases.train_classifier import \
    TrainClassifierUseCase


# pylint: disable=invalid-name
def get_dependencies_injection_config(
    *,
    network_factory: NetworkFactoryPort,
    metrics_sink: MetricsSinkPort,
    image_decoder: ImageDecoderPort,
    sample_source: Optional[SampleSourcePort] = None,
):
    """Return an inject binder function.

    Use cases that need a sample source are only bound when one is given
    (`predict` works from loose files).
    """

    def configure_dependencies_injection(binder: inject.Binder) -> None:
        lifecycle = ModelLifecycle(network_factory=network_factory, metrics_sink=metrics_sink)

        binder.bind(NetworkFactoryPort, network_factory)
        binder.bind(MetricsSinkPort, metrics_sink)
        binder.bind(ImageDecoderPort, image_decoder)
        binder.bind(ModelLifecycle, lifecycle)

        binder.bind(
            PredictImagesUseCase,
            PredictImagesUseCase(image_decoder=image_decoder, model_lifecycle=lifecycle, metrics_sink=metrics_sink),
        )
        if sample_source is not None:
            binder.bind(SampleSourcePort, sample_source)
            binder.bind(
                TrainClassifierUseCase,
                TrainClassifierUseCase(
                    sample_source=sample_source,
                    model_lifecycle=lifecycle,
                    metrics_sink=metrics_sink,
                ),
            )
            binder.bind(
                EvaluateClassifierUseCase,
                EvaluateClassifierUseCase(
                    sample_source=sample_source,
                    model_lifecycle=lifecycle,
                    metrics_sink=metrics_sink,
                ),
            )

    return configure_dependencies_injection


def configure_injections(
    *,
    network_factory: NetworkFactoryPort,
    metrics_sink: MetricsSinkPort,
    image_decoder: ImageDecoderPort,
    sample_source: Optional[SampleSourcePort] = None,
) -> None:
    """Configure inject with this app's runtime bindings.

    Safe to call multiple times (clears previous bindings).
    """

    config = get_dependencies_injection_config(
        network_factory=network_factory,
        metrics_sink=metrics_sink,
        image_decoder=image_decoder,
        sample_source=sample_source,
    )

    if inject.is_configured():
        inject.clear_and_configure(config)
    else:
        inject.configure(config)
