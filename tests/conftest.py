import numpy as np
import pytest

from wetness_sim.surface import SimParams, SupportMaps, WetnessEngine


@pytest.fixture
def make_engine():
    """Builds a CPU engine configured with constant support maps unless `maps` is given."""
    def _make(width=32, height=24, params=None, seed=0, maps=None, **map_kwargs):
        engine = WetnessEngine(params=params if params is not None else SimParams(), seed=seed, arch="cpu")
        if maps is None:
            maps = SupportMaps.uniform(width, height, **map_kwargs)
        engine.configure(width, height, maps)
        return engine
    return _make


class DepositRecorder:
    """Stands in for the engine's deposit queue in particle tests."""

    def __init__(self):
        self.calls = []

    def __call__(self, cx, cy, radius, intensity, stretch_x=1.0, stretch_y=1.0):
        self.calls.append((cx, cy, radius, intensity, stretch_x, stretch_y))


@pytest.fixture
def recorder():
    return DepositRecorder()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
