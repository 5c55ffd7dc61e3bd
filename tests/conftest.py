"""
Shared fixtures for the popup_frequency test suite.
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from popup_frequency.config import FrequencyConfig
from popup_frequency.engine import FrequencyEngine

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, ts):
        self.now = ts
        return ts


class FixedDraw:
    """Stand-in for numpy.random.Generator returning a constant draw."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def random(self):
        self.calls += 1
        return self.value


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def rng():
    return np.random.default_rng(seed=7)


@pytest.fixture
def make_engine(clock, rng):
    """Factory building an engine on the shared clock; config keys override defaults."""

    def _make(rng_override=None, **config_values):
        config = FrequencyConfig(**config_values) if config_values else FrequencyConfig()
        return FrequencyEngine(
            config=config,
            clock=clock,
            rng=rng_override if rng_override is not None else rng,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    # Loose defaults so individual tests exercise one check at a time
    return make_engine(max_per_day=None, max_per_session=None, default_cooldown=timedelta(0))
