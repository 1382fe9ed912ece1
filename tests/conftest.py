"""
Shared pytest fixtures for Markov model tests.
"""
from typing import List

import pytest
from fastapi.testclient import TestClient

from markovgen.app import app
from markovgen.services.markov import MarkovModel, MarkovModelRegistry, get_markov_registry


# Illustrative training sequence: a -> {b: 2, c: 1}, b -> {a: 1}, c -> {a: 1}
SAMPLE_TOKENS = ["a", "b", "a", "c", "a", "b"]

# Word-level sequence with repeated words and a dead end ("うち")
SAMPLE_WORDS = ["すもも", "も", "もも", "も", "もも", "の", "うち"]


class FixedRandom:
    """
    Scripted stand-in for numpy's Generator.

    Returns queued floats from random() and queued ints from integers(),
    recording the bound passed to integers().
    """

    def __init__(self, floats=(), ints=()):
        self.floats = list(floats)
        self.ints = list(ints)
        self.integer_bounds: List[int] = []

    def random(self) -> float:
        return self.floats.pop(0)

    def integers(self, high: int) -> int:
        self.integer_bounds.append(high)
        return self.ints.pop(0)


@pytest.fixture
def sample_tokens() -> List[str]:
    return list(SAMPLE_TOKENS)


@pytest.fixture
def sample_model(sample_tokens) -> MarkovModel:
    """Model over SAMPLE_TOKENS with a fixed seed."""
    return MarkovModel.build(sample_tokens, rng=42)


@pytest.fixture
def registry(tmp_path) -> MarkovModelRegistry:
    """Registry persisting into a temporary directory."""
    return MarkovModelRegistry(model_dir=tmp_path / "models", default_seed=7)


@pytest.fixture
def client(registry):
    """Test client whose router uses the temporary registry."""
    app.dependency_overrides[get_markov_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fixed_random():
    """Factory for scripted random sources."""
    return FixedRandom
