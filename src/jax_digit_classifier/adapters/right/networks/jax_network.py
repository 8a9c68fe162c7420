from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
import optax

from jax_digit_classifier.adapters.right.model_file_safetensors import ModelFile, read_model_file, write_model_file
from jax_digit_classifier.core.domain.entities.model import LOSS_KINDS, InputShape, LayerSpec, LossKind, Topology
from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.domain.utils.jax_rng import layer_keys
from jax_digit_classifier.core.ports.network import NetworkFactoryPort, NetworkPort

Params = list[dict[str, jax.Array]]  # one dict per layer, empty for relu/pool/softmax

_EPS = 1e-12


def output_shape(spec: LayerSpec, shape: tuple[int, ...]) -> tuple[int, ...]:
    """Per-sample output shape of `spec` for a per-sample input `shape`."""

    if spec.kind in ("conv", "max_pool"):
        if len(shape) != 3:
            raise ConfigurationError(f"{spec.kind} layer needs a (channels, h, w) input, got {shape}")
        c, h, w = shape
        (kh, kw), (sh, sw) = spec.kernel, spec.stride
        oh, ow = (h - kh) // sh + 1, (w - kw) // sw + 1
        if oh <= 0 or ow <= 0 or h < kh or w < kw:
            raise ConfigurationError(f"{spec.kind} kernel {spec.kernel} does not fit input {shape}")
        return (spec.out_channels if spec.kind == "conv" else c, oh, ow)
    if spec.kind == "dense":
        return (spec.units,)
    return shape


@dataclass(frozen=True)
class LayerStackFns:
    """Pure init/apply functions for a layer stack (jit/vmap friendly).

    Inputs are laid out NCHW with H/W taken from the (width, height) axes of the
    encoded batch; conv and pool use VALID padding.
    """

    layers: tuple[LayerSpec, ...]

    def init(self, *, seed: int, sample_shape: tuple[int, ...]) -> Params:
        params: Params = []
        shape = sample_shape
        for spec, key in zip(self.layers, layer_keys(seed, len(self.layers)), strict=True):
            layer: dict[str, jax.Array] = {}
            if spec.kind == "conv":
                kh, kw = spec.kernel
                fan_in = shape[0] * kh * kw
                w_shape = (spec.out_channels, shape[0], kh, kw)
                layer["w"] = jax.random.normal(key, w_shape, dtype=jnp.float32) * math.sqrt(2.0 / fan_in)
                if spec.use_bias:
                    layer["b"] = jnp.zeros((spec.out_channels,), dtype=jnp.float32)
            elif spec.kind == "dense":
                fan_in = int(np.prod(shape))
                layer["w"] = jax.random.normal(key, (fan_in, spec.units), dtype=jnp.float32) * math.sqrt(2.0 / fan_in)
                if spec.use_bias:
                    layer["b"] = jnp.zeros((spec.units,), dtype=jnp.float32)
            params.append(layer)
            shape = output_shape(spec, shape)
        return params

    def apply(self, params: Params, x: jax.Array) -> jax.Array:
        # x: (batch, channels, width, height) -> (batch, outputs)
        h = x
        for spec, p in zip(self.layers, params):
            if spec.kind == "conv":
                h = jax.lax.conv_general_dilated(
                    h,
                    p["w"],
                    window_strides=spec.stride,
                    padding="VALID",
                    dimension_numbers=("NCHW", "OIHW", "NCHW"),
                )
                if "b" in p:
                    h = h + p["b"][None, :, None, None]
            elif spec.kind == "max_pool":
                h = jax.lax.reduce_window(
                    h,
                    -jnp.inf,
                    jax.lax.max,
                    (1, 1, *spec.kernel),
                    (1, 1, *spec.stride),
                    "VALID",
                )
            elif spec.kind == "dense":
                h = jnp.dot(jnp.reshape(h, (h.shape[0], -1)), p["w"])
                if "b" in p:
                    h = h + p["b"]
            elif spec.kind == "relu":
                h = jax.nn.relu(h)
            elif spec.kind == "softmax":
                h = jax.nn.softmax(jnp.reshape(h, (h.shape[0], -1)), axis=-1)
        return jnp.reshape(h, (h.shape[0], -1))


def loss_fn(kind: LossKind, outputs: jax.Array, targets: jax.Array) -> jax.Array:
    """Batch-mean loss. Cross-entropy expects probabilities (a softmax output)."""

    if kind == "cross_entropy":
        return -jnp.mean(jnp.sum(targets * jnp.log(jnp.clip(outputs, _EPS, 1.0)), axis=-1))
    return 0.5 * jnp.mean(jnp.sum(jnp.square(outputs - targets), axis=-1))


class JaxNetwork(NetworkPort):
    """JAX/Optax implementation of the network port.

    Layers are added one by one; parameters are initialised from `seed` the
    first time the network trains, infers or saves. Updates are plain SGD with
    the learning rate supplied on every call.
    """

    def __init__(self, *, seed: int = 0) -> None:
        self._seed = seed
        self._layers: list[LayerSpec] = []
        self._loss: LossKind = "cross_entropy"
        self._input_shape: InputShape | None = None
        self._properties: dict[str, str] = {}
        self._params: Params | None = None
        self._fns: LayerStackFns | None = None
        self._optimizer = optax.inject_hyperparams(optax.sgd)(learning_rate=0.0)
        self._opt_state: Any = None
        self._train_step: Any = None
        self._infer_step: Any = None

    @property
    def properties(self) -> dict[str, str]:
        return self._properties

    @property
    def input_shape(self) -> InputShape | None:
        return self._input_shape

    @property
    def topology(self) -> Topology:
        return Topology(layers=tuple(self._layers), loss=self._loss, name=self._properties.get("topology", "custom"))

    @property
    def params(self) -> Params:
        return self._ensure_ready()

    def _check_mutable(self) -> None:
        if self._params is not None:
            raise ConfigurationError("network structure cannot change after initialisation")

    def set_input_shape(self, shape: InputShape) -> None:
        self._check_mutable()
        if len(shape) != 4 or min(shape) <= 0:
            raise ConfigurationError(f"input shape must be 4 positive dims (n, c, w, h), got {shape}")
        self._input_shape = tuple(int(d) for d in shape)

    def set_loss_kind(self, kind: LossKind) -> None:
        self._check_mutable()
        if kind not in LOSS_KINDS:
            raise ConfigurationError(f"unknown loss kind {kind!r}")
        self._loss = kind

    def add_layer(self, spec: LayerSpec) -> None:
        self._check_mutable()
        self._layers.append(spec)

    def _compile(self, params: Params) -> None:
        fns = LayerStackFns(layers=tuple(self._layers))
        optimizer = self._optimizer
        loss_kind = self._loss

        @jax.jit
        def train_step(p: Params, s: optax.OptState, x: jax.Array, y: jax.Array):
            def _loss(pp: Params) -> jax.Array:
                return loss_fn(loss_kind, fns.apply(pp, x), y)

            loss, grads = jax.value_and_grad(_loss)(p)
            updates, s2 = optimizer.update(grads, s, p)
            return optax.apply_updates(p, updates), s2, loss

        self._fns = fns
        self._params = params
        self._opt_state = optimizer.init(params)
        self._train_step = train_step
        self._infer_step = jax.jit(fns.apply)

    def _ensure_ready(self) -> Params:
        if self._params is not None:
            return self._params
        if self._input_shape is None:
            raise ConfigurationError("set_input_shape must be called before use")
        if not self._layers:
            raise ConfigurationError("network has no layers")
        fns = LayerStackFns(layers=tuple(self._layers))
        params = fns.init(seed=self._seed, sample_shape=self._input_shape[1:])
        self._compile(params)
        return params

    def _as_input(self, x: np.ndarray) -> jax.Array:
        sample_shape = self._input_shape[1:] if self._input_shape is not None else None
        x = np.asarray(x, dtype=np.float32)
        if x.ndim != 4 or x.shape[1:] != sample_shape:
            raise ConfigurationError(f"expected input (n, {sample_shape}), got {x.shape}")
        return jnp.asarray(x)

    def train_batch(self, x: np.ndarray, y: np.ndarray, learning_rate: float) -> float:
        self._ensure_ready()
        xb = self._as_input(x)
        yb = jnp.reshape(jnp.asarray(y, dtype=jnp.float32), (xb.shape[0], -1))
        self._opt_state.hyperparams["learning_rate"] = jnp.asarray(learning_rate, dtype=jnp.float32)
        self._params, self._opt_state, loss = self._train_step(self._params, self._opt_state, xb, yb)
        return float(loss)

    def infer_batch(self, x: np.ndarray) -> np.ndarray:
        self._ensure_ready()
        return np.asarray(self._infer_step(self._params, self._as_input(x)))

    def save_model(self, path: str) -> bool:
        params = self._ensure_ready()
        if self._input_shape is None:
            raise ConfigurationError("set_input_shape must be called before saving")
        model = ModelFile(
            topology=self.topology,
            input_shape=self._input_shape,
            params=[{k: np.asarray(v) for k, v in layer.items()} for layer in params],
            properties=dict(self._properties),
        )
        try:
            write_model_file(path, model)
        except Exception:  # pylint: disable=broad-exception-caught
            return False
        return True

    def load_model(self, path: str) -> bool:
        try:
            model = read_model_file(path)
            fns = LayerStackFns(layers=model.topology.layers)
            expected = fns.init(seed=self._seed, sample_shape=model.input_shape[1:])
            params: Params = []
            for i, (want, got) in enumerate(zip(expected, model.params, strict=True)):
                if set(want) != set(got) or any(want[k].shape != got[k].shape for k in want):
                    raise ConfigurationError(f"layer {i} parameters do not match the stored topology")
                params.append({k: jnp.asarray(v) for k, v in got.items()})
        except Exception:  # pylint: disable=broad-exception-caught
            return False

        self._layers = list(model.topology.layers)
        self._loss = model.topology.loss
        self._input_shape = model.input_shape
        self._properties = dict(model.properties)
        self._properties.setdefault("topology", model.topology.name)
        self._compile(params)
        return True


class JaxNetworkFactory(NetworkFactoryPort):
    def __init__(self, *, seed: int = 0) -> None:
        self._seed = seed

    def create(self) -> JaxNetwork:
        return JaxNetwork(seed=self._seed)
