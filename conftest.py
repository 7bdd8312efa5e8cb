from typing import Optional
import numpy as np
import pytest


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


def random_event(rng: np.random.Generator, n: int, dim: int = 2) -> np.ndarray:
    """
    [weight, coords...] array with positive weights
    """
    return np.column_stack([rng.uniform(0.1, 1.0, n), rng.normal(size=(n, dim))])


@pytest.fixture
def make_event(rng):
    def _make(n: int, dim: int = 2) -> np.ndarray:
        return random_event(rng, n, dim)
    return _make


@pytest.fixture
def make_events(rng):
    """
    Collections of random events with varying multiplicities
    """
    def _make(n_events: int, n_particles: Optional[int] = None, dim: int = 2) -> list[np.ndarray]:
        sizes = rng.integers(3, 10, n_events) if n_particles is None else [n_particles]*n_events
        return [random_event(rng, int(size), dim) for size in sizes]
    return _make
