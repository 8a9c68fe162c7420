from __future__ import annotations

from jax_digit_classifier.core.domain.entities.model import InputShape, Topology
from jax_digit_classifier.core.ports.metrics_sink import MetricsSinkPort
from jax_digit_classifier.core.ports.network import NetworkFactoryPort, NetworkPort

# Keys of NetworkPort.properties written by this module.
INPUT_SCALE_KEY = "input_scale"
TOPOLOGY_NAME_KEY = "topology"
NUM_CLASSES_KEY = "num_classes"


class ModelLifecycle:
    """Builds, saves and loads networks as opaque units.

    A model is either built in memory and trained in place, or loaded from a
    file and used read-only. Saving records the pixel scale the weights were
    trained with, but nothing here forces inference to use it: callers pick the
    scale for their BatchEncoder explicitly and can compare it against
    `persisted_input_scale`.
    """

    def __init__(self, *, network_factory: NetworkFactoryPort, metrics_sink: MetricsSinkPort | None = None) -> None:
        self._factory = network_factory
        self._metrics = metrics_sink

    def build(self, topology: Topology, input_shape: InputShape) -> NetworkPort:
        network = self._factory.create()
        network.set_input_shape(tuple(int(d) for d in input_shape))
        network.set_loss_kind(topology.loss)
        for layer in topology.layers:
            network.add_layer(layer)
        network.properties[TOPOLOGY_NAME_KEY] = topology.name
        return network

    def save(self, network: NetworkPort, path: str, *, input_scale: float | None = None, step: int = 0) -> bool:
        """Persist `network` to `path`. Failure is reported, never raised.

        The in-memory network is left untouched either way.
        """

        if input_scale is not None:
            network.properties[INPUT_SCALE_KEY] = repr(float(input_scale))
        ok = bool(network.save_model(path))
        if self._metrics:
            self._metrics.log(step=step, metrics={"event": "model_saved" if ok else "model_save_failed", "path": path})
        return ok

    def load(self, path: str) -> NetworkPort | None:
        """Return a ready-to-use network, or None if `path` could not be loaded."""

        network = self._factory.create()
        ok = bool(network.load_model(path))
        if self._metrics:
            self._metrics.log(step=0, metrics={"event": "model_loaded" if ok else "model_load_failed", "path": path})
        return network if ok else None

    @staticmethod
    def persisted_input_scale(network: NetworkPort) -> float | None:
        raw = network.properties.get(INPUT_SCALE_KEY)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None
