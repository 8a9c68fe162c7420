from __future__ import annotations

import pytest

from jax_digit_classifier.core.domain.errors.training import ConfigurationError
from jax_digit_classifier.core.domain.utils.schedule import LearningRateState


def test_decay_is_linear_until_the_floor() -> None:
    lr = LearningRateState(initial=0.1, decay_step=0.002, minimum=0.0001)

    lr.decay()
    assert lr.value == pytest.approx(0.098)
    lr.decay()
    assert lr.value == pytest.approx(0.096)


def test_decay_never_goes_below_the_floor() -> None:
    lr = LearningRateState(initial=0.1, decay_step=0.002, minimum=0.0001)
    previous = lr.value
    for _ in range(100):
        value = lr.decay()
        assert value <= previous
        assert value >= 0.0001
        previous = value

    assert lr.value == pytest.approx(0.0001)
    assert lr.decays == 100


def test_zero_step_keeps_the_rate() -> None:
    lr = LearningRateState(initial=0.05, decay_step=0.0, minimum=0.0)
    lr.decay()
    assert lr.value == 0.05


def test_invalid_settings() -> None:
    with pytest.raises(ConfigurationError):
        LearningRateState(initial=0.0, decay_step=0.1, minimum=0.0)
    with pytest.raises(ConfigurationError):
        LearningRateState(initial=0.1, decay_step=-0.1, minimum=0.0)
    with pytest.raises(ConfigurationError):
        LearningRateState(initial=0.1, decay_step=0.1, minimum=0.2)
