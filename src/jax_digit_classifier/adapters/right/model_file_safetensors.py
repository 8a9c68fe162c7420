from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

import numpy as np
from safetensors import safe_open
from safetensors.numpy import save_file

from jax_digit_classifier.core.domain.entities.model import InputShape, LayerSpec, Topology
from jax_digit_classifier.core.domain.errors.training import ConfigurationError, ModelIOError

FORMAT_NAME = "jax-digit-classifier"
FORMAT_VERSION = "1"

LayerParams = dict[str, np.ndarray]


@dataclass(frozen=True)
class ModelFile:
    """Everything needed to rebuild a trained network."""

    topology: Topology
    input_shape: InputShape
    params: list[LayerParams]
    properties: dict[str, str] = field(default_factory=dict)


def write_model_file(path: str, model: ModelFile) -> None:
    """Write one .safetensors file: `layer_{i}.w` / `layer_{i}.b` tensors plus
    JSON metadata (format version, topology, input shape, properties).

    The file is written next to `path` and moved into place, so a failed write
    leaves any previous model untouched.
    """

    if len(model.params) != len(model.topology.layers):
        raise ValueError(f"got params for {len(model.params)} layers, topology has {len(model.topology.layers)}")

    flat: dict[str, np.ndarray] = {}
    for i, layer in enumerate(model.params):
        for name, value in layer.items():
            flat[f"layer_{i}.{name}"] = np.ascontiguousarray(value, dtype=np.float32)

    metadata = {
        "format": FORMAT_NAME,
        "format_version": FORMAT_VERSION,
        "topology": json.dumps(
            {
                "name": model.topology.name,
                "loss": model.topology.loss,
                "layers": [spec.to_dict() for spec in model.topology.layers],
            }
        ),
        "input_shape": json.dumps([int(d) for d in model.input_shape]),
        "properties": json.dumps({str(k): str(v) for k, v in model.properties.items()}),
    }

    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    tmp_path = f"{path}.tmp"
    try:
        save_file(flat, tmp_path, metadata=metadata)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def read_model_file(path: str) -> ModelFile:
    if not os.path.isfile(path):
        raise ModelIOError(f"model file not found: {path}")

    with safe_open(path, framework="np") as f:
        metadata = f.metadata() or {}
        tensors = {key: f.get_tensor(key) for key in f.keys()}

    if metadata.get("format") != FORMAT_NAME:
        raise ModelIOError(f"{path} is not a {FORMAT_NAME} model file")
    if metadata.get("format_version") != FORMAT_VERSION:
        raise ModelIOError(
            f"unsupported model format version {metadata.get('format_version')!r} (expected {FORMAT_VERSION})"
        )

    try:
        topo = json.loads(metadata["topology"])
        topology = Topology(
            name=topo.get("name", "custom"),
            loss=topo["loss"],
            layers=tuple(LayerSpec.from_dict(d) for d in topo["layers"]),
        )
        input_shape = tuple(int(d) for d in json.loads(metadata["input_shape"]))
        properties = {str(k): str(v) for k, v in json.loads(metadata.get("properties", "{}")).items()}
    except (ConfigurationError, KeyError, TypeError, ValueError) as exc:
        raise ModelIOError(f"corrupt metadata in {path}: {exc}") from exc

    if len(input_shape) != 4:
        raise ModelIOError(f"input_shape must have 4 dims, got {input_shape}")

    params: list[LayerParams] = []
    for i in range(len(topology.layers)):
        layer: LayerParams = {}
        for name in ("w", "b"):
            key = f"layer_{i}.{name}"
            if key in tensors:
                layer[name] = tensors[key]
        params.append(layer)

    return ModelFile(topology=topology, input_shape=input_shape, params=params, properties=properties)
