from __future__ import annotations

import jax


def layer_keys(seed: int, count: int) -> list[jax.Array]:
    """Derive one deterministic PRNG key per layer from a single seed."""

    root = jax.random.PRNGKey(seed)
    return [jax.random.fold_in(root, i) for i in range(count)]
