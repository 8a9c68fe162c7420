from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Literal

from jax_digit_classifier.core.domain.errors.training import ConfigurationError

LayerKind = Literal["conv", "max_pool", "dense", "relu", "softmax"]
LossKind = Literal["cross_entropy", "mse"]

LAYER_KINDS: tuple[str, ...] = ("conv", "max_pool", "dense", "relu", "softmax")
LOSS_KINDS: tuple[str, ...] = ("cross_entropy", "mse")

# (batch, channels, width, height)
InputShape = tuple[int, int, int, int]


@dataclass(frozen=True)
class LayerSpec:
    """One layer of a network topology.

    Only the fields relevant to `kind` are used:
      - conv: out_channels, kernel, stride, use_bias
      - max_pool: kernel, stride
      - dense: units, use_bias
      - relu / softmax: nothing
    """

    kind: LayerKind
    out_channels: int = 0
    units: int = 0
    kernel: tuple[int, int] = (1, 1)
    stride: tuple[int, int] = (1, 1)
    use_bias: bool = True

    def __post_init__(self) -> None:
        if self.kind not in LAYER_KINDS:
            raise ConfigurationError(f"unknown layer kind {self.kind!r}")
        if self.kind == "conv" and self.out_channels <= 0:
            raise ConfigurationError("conv layer needs out_channels > 0")
        if self.kind == "dense" and self.units <= 0:
            raise ConfigurationError("dense layer needs units > 0")
        if min(*self.kernel, *self.stride) <= 0:
            raise ConfigurationError(f"kernel and stride must be positive, got {self.kernel}/{self.stride}")

    @property
    def has_params(self) -> bool:
        return self.kind in ("conv", "dense")

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kernel"] = list(self.kernel)
        d["stride"] = list(self.stride)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LayerSpec:
        return cls(
            kind=d["kind"],
            out_channels=int(d.get("out_channels", 0)),
            units=int(d.get("units", 0)),
            kernel=tuple(int(v) for v in d.get("kernel", (1, 1))),
            stride=tuple(int(v) for v in d.get("stride", (1, 1))),
            use_bias=bool(d.get("use_bias", True)),
        )


def conv(out_channels: int, kernel: int, stride: int = 1, use_bias: bool = True) -> LayerSpec:
    return LayerSpec(kind="conv", out_channels=out_channels, kernel=(kernel, kernel), stride=(stride, stride), use_bias=use_bias)


def max_pool(window: int, stride: int) -> LayerSpec:
    return LayerSpec(kind="max_pool", kernel=(window, window), stride=(stride, stride))


def dense(units: int, use_bias: bool = True) -> LayerSpec:
    return LayerSpec(kind="dense", units=units, use_bias=use_bias)


RELU = LayerSpec(kind="relu")
SOFTMAX = LayerSpec(kind="softmax")


@dataclass(frozen=True)
class Topology:
    """Layer stack plus loss kind; everything needed to rebuild a network."""

    layers: tuple[LayerSpec, ...]
    loss: LossKind = "cross_entropy"
    name: str = field(default="custom", compare=False)

    def __post_init__(self) -> None:
        if not self.layers:
            raise ConfigurationError("topology needs at least one layer")
        if self.loss not in LOSS_KINDS:
            raise ConfigurationError(f"unknown loss kind {self.loss!r}")


def conv_topology(num_classes: int) -> Topology:
    """Small LeNet-style convolutional net."""

    return Topology(
        name="conv",
        loss="cross_entropy",
        layers=(
            conv(6, 5),
            RELU,
            max_pool(2, 2),
            RELU,
            conv(8, 5),
            RELU,
            max_pool(2, 2),
            RELU,
            dense(64),
            RELU,
            dense(num_classes),
            RELU,
            SOFTMAX,
        ),
    )


def mlp_topology(num_classes: int) -> Topology:
    return Topology(
        name="mlp",
        loss="mse",
        layers=(
            dense(512),
            RELU,
            dense(256),
            RELU,
            dense(num_classes),
            RELU,
            SOFTMAX,
        ),
    )


TopologyFactory = Callable[[int], Topology]

TOPOLOGIES: dict[str, TopologyFactory] = {
    "conv": conv_topology,
    "mlp": mlp_topology,
}


def topology_for(kind: str, num_classes: int) -> Topology:
    try:
        factory = TOPOLOGIES[kind.lower().strip()]
    except KeyError:
        raise ConfigurationError(f"model kind must be one of: {', '.join(TOPOLOGIES)} (got {kind!r})") from None
    return factory(num_classes)
