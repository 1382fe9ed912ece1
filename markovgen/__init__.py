"""
markovgen: first-order Markov sequence generator.
"""

from markovgen.services.markov import (
    InvalidModel,
    MarkovError,
    MarkovModel,
    MarkovModelRegistry,
    NoValidTransition,
)

__version__ = "1.0.0"

__all__ = [
    "InvalidModel",
    "MarkovError",
    "MarkovModel",
    "MarkovModelRegistry",
    "NoValidTransition",
]
