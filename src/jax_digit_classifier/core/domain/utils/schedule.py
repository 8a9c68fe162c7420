from __future__ import annotations

from jax_digit_classifier.core.domain.errors.training import ConfigurationError


class LearningRateState:
    """Linearly decaying learning rate with a floor.

    Each `decay()` subtracts `decay_step` and clamps at `minimum`; the value
    never increases and never drops below the floor.
    """

    def __init__(self, *, initial: float, decay_step: float, minimum: float) -> None:
        if initial <= 0.0:
            raise ConfigurationError(f"learning rate must be > 0, got {initial}")
        if decay_step < 0.0:
            raise ConfigurationError(f"decay_step must be >= 0, got {decay_step}")
        if not 0.0 <= minimum <= initial:
            raise ConfigurationError(f"min learning rate must be in [0, {initial}], got {minimum}")
        self._value = float(initial)
        self._decay_step = float(decay_step)
        self._minimum = float(minimum)
        self._decays = 0

    @property
    def value(self) -> float:
        return self._value

    @property
    def minimum(self) -> float:
        return self._minimum

    @property
    def decays(self) -> int:
        return self._decays

    def decay(self) -> float:
        self._value = max(self._value - self._decay_step, self._minimum)
        self._decays += 1
        return self._value

    def __repr__(self) -> str:
        return f"LearningRateState(value={self._value}, decay_step={self._decay_step}, minimum={self._minimum})"
