"""
First-order Markov chain over a sorted token domain (CPU-only).
Builds a cumulative transition table from a training sequence and samples
a continuation one token per call.
Persistence: JSON-friendly flat record (elements, cm_dist, pre_index).
"""
from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)

PROB_TOLERANCE = 1e-6


@runtime_checkable
class SupportsRandom(Protocol):
    """The subset of numpy's Generator the sampler uses."""

    def random(self) -> float: ...

    def integers(self, high: int) -> Any: ...


# ints and None seed numpy's default_rng
RandomSource = Union[SupportsRandom, int, None]


class MarkovError(RuntimeError):
    """Base error for Markov model operations."""


class InvalidModel(MarkovError, ValueError):
    """Model cannot be built or loaded: empty training data or malformed fields."""


class NoValidTransition(MarkovError):
    """Sampling found no state with outgoing transitions."""


def _make_rng(rng: RandomSource) -> SupportsRandom:
    if rng is None or isinstance(rng, (int, np.integer)):
        return np.random.default_rng(rng)
    return rng


def cumulative_rows(counts: np.ndarray) -> np.ndarray:
    """
    Convert a square transition count matrix into row-wise cumulative probabilities.

    Rows with no outgoing transitions stay all-zero. In every other row the
    entries from the last observed destination onwards are pinned to exactly 1.0.

    Args:
        counts: (n, n) integer matrix, counts[i, j] = transitions i -> j

    Returns:
        (n, n) float64 matrix
    """
    totals = counts.sum(axis=1)
    cm_dist = np.zeros(counts.shape, dtype=np.float64)
    live = totals > 0
    cm_dist[live] = np.cumsum(counts[live] / totals[live, None], axis=1)
    for i in np.flatnonzero(live):
        last = int(np.flatnonzero(counts[i])[-1])
        cm_dist[i, last:] = 1.0
    return cm_dist


def sample_row(row: np.ndarray, f: float) -> int:
    """
    Inverse-CDF lookup on one cumulative row.

    Returns the first column j with f <= row[j]; the last column if none
    qualifies (rounding at the top of the row).
    """
    j = int(np.searchsorted(row, f, side="left"))
    return min(j, len(row) - 1)


class MarkovModel:
    """
    First-order Markov chain over a sorted token domain.

    State index i is the position of a token in ``elements``. Row i of
    ``cm_dist`` holds the prefix-summed probabilities of moving from state i
    to states 0..j. A row of zeros marks a dead state: the token was seen
    but nothing was ever observed after it.

    The cursor is the index of the last emitted token, or None when the next
    call to ``next()`` starts a fresh chain.

    Usage:
        model = MarkovModel.build(["a", "b", "a", "c", "a", "b"], rng=42)
        first = model.next()
        model.initialize()  # end this chain, start an unrelated one
    """

    def __init__(
        self,
        elements: Iterable[Any],
        cm_dist: Any,
        cursor: Optional[int] = None,
        rng: RandomSource = None,
    ):
        """
        Create a model from already-computed fields.

        Use ``build()`` to train from a sequence; this constructor validates
        fields coming from persisted state.

        Args:
            elements: Sorted, pairwise distinct tokens
            cm_dist: (n, n) cumulative transition table
            cursor: Last emitted state index, or None for a fresh chain
            rng: numpy Generator (or compatible), int seed, or None

        Raises:
            InvalidModel: if any field breaks the model invariants
        """
        self._elements: List[Any] = list(elements)
        self._cm_dist = self._validate(self._elements, cm_dist)
        self._cursor = self._validate_cursor(cursor, len(self._elements))
        self._live = np.flatnonzero(self._cm_dist[:, -1] > 0)
        self._rng = _make_rng(rng)

    @classmethod
    def build(cls, tokens: Iterable[Any], rng: RandomSource = None) -> "MarkovModel":
        """
        Train a model from an ordered token sequence.

        Args:
            tokens: Hashable tokens sharing a total order
            rng: numpy Generator (or compatible), int seed, or None

        Returns:
            Model in the fresh state

        Raises:
            InvalidModel: if the sequence is empty or its tokens cannot be ordered
        """
        sequence = list(tokens)
        if not sequence:
            raise InvalidModel("cannot build a Markov model from an empty sequence")

        try:
            elements = sorted(set(sequence))
        except TypeError as e:
            raise InvalidModel(f"tokens must be hashable and mutually comparable: {e}") from e

        index = {token: i for i, token in enumerate(elements)}
        states = np.fromiter((index[t] for t in sequence), dtype=np.intp, count=len(sequence))

        n = len(elements)
        counts = np.zeros((n, n), dtype=np.int64)
        np.add.at(counts, (states[:-1], states[1:]), 1)

        model = cls(elements, cumulative_rows(counts), rng=rng)
        logger.debug(
            f"[Markov] Built model: {len(sequence)} tokens, {n} states, "
            f"{len(model._live)} live"
        )
        return model

    # --- validation ---
    @staticmethod
    def _validate(elements: List[Any], cm_dist: Any) -> np.ndarray:
        n = len(elements)
        if n == 0:
            raise InvalidModel("model domain is empty")
        try:
            if any(not (a < b) for a, b in zip(elements, elements[1:])):
                raise InvalidModel("model domain must be sorted and free of duplicates")
        except TypeError as e:
            raise InvalidModel(f"model domain is not mutually comparable: {e}") from e

        try:
            table = np.array(cm_dist, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidModel(f"cumulative table is not numeric: {e}") from e
        if table.shape != (n, n):
            raise InvalidModel(f"cumulative table must be {n}x{n}, got shape {table.shape}")
        if not np.all(np.isfinite(table)):
            raise InvalidModel("cumulative table contains non-finite values")

        # Rows accumulated in float32 drift by up to about one epsilon per column
        tolerance = max(PROB_TOLERANCE, n * float(np.finfo(np.float32).eps))
        dead = np.all(table == 0.0, axis=1)
        live = table[~dead]
        if live.size:
            if np.any(np.diff(live, axis=1) < -tolerance) or np.any(live < 0.0):
                raise InvalidModel("cumulative table rows must be non-decreasing")
            if np.any(np.abs(live[:, -1] - 1.0) > tolerance):
                raise InvalidModel("cumulative table rows must end at 1.0")
        for i in np.flatnonzero(~dead):
            last = int(np.flatnonzero(np.diff(table[i], prepend=0.0) > 0.0)[-1])
            table[i, last:] = 1.0
        table.setflags(write=False)
        return table

    @staticmethod
    def _validate_cursor(cursor: Optional[int], n: int) -> Optional[int]:
        if cursor is None:
            return None
        if isinstance(cursor, bool) or not isinstance(cursor, (int, np.integer)):
            raise InvalidModel(f"cursor must be an integer, got {type(cursor).__name__}")
        if not 0 <= cursor < n:
            raise InvalidModel(f"cursor {cursor} out of range for {n} states")
        return int(cursor)

    # --- accessors ---
    @property
    def elements(self) -> List[Any]:
        return list(self._elements)

    @property
    def cm_dist(self) -> np.ndarray:
        return self._cm_dist

    @property
    def cursor(self) -> Optional[int]:
        return self._cursor

    @property
    def is_fresh(self) -> bool:
        return self._cursor is None

    def live_states(self) -> List[int]:
        """State indices with at least one observed outgoing transition."""
        return [int(i) for i in self._live]

    def __len__(self) -> int:
        return len(self._elements)

    # --- sampling ---
    def next(self) -> Any:
        """
        Return the next token of the chain and advance the cursor.

        A fresh chain (or one whose last token is a dead state) starts from a
        state drawn uniformly among the live states. A one-token domain with
        no transitions yields its only token.

        Raises:
            NoValidTransition: if no state has outgoing transitions
        """
        row = self._cursor
        if row is not None and self._cm_dist[row, -1] == 0.0:
            self._cursor = row = None

        if row is None:
            if len(self._live) == 0:
                if len(self._elements) == 1:
                    self._cursor = 0
                    return self._elements[0]
                raise NoValidTransition(
                    f"none of the {len(self._elements)} states has an outgoing transition"
                )
            row = int(self._live[self._rng.integers(len(self._live))])

        f = float(self._rng.random())
        j = sample_row(self._cm_dist[row], f)
        self._cursor = j
        return self._elements[j]

    def generate(self, count: int) -> List[Any]:
        """Sample ``count`` successive tokens, continuing the current chain."""
        return [self.next() for _ in range(count)]

    def initialize(self):
        """Forget the last emitted token; the next sample starts a fresh chain."""
        self._cursor = None

    def transition_probabilities(self, token: Any) -> Dict[Any, float]:
        """
        Get the outgoing transition probabilities of a token.

        Args:
            token: A token from the domain

        Returns:
            {destination_token: probability} for destinations with probability > 0

        Raises:
            KeyError: if the token is not in the domain
        """
        try:
            i = self._elements.index(token)
        except ValueError:
            raise KeyError(token) from None
        probs = np.diff(self._cm_dist[i], prepend=0.0)
        return {self._elements[j]: float(p) for j, p in enumerate(probs) if p > 0.0}

    # --- persistence ---
    def to_dict(self) -> Dict[str, Any]:
        """Flat record; a fresh cursor is stored as pre_index == len(elements)."""
        return {
            "elements": list(self._elements),
            "cm_dist": self._cm_dist.tolist(),
            "pre_index": len(self._elements) if self._cursor is None else self._cursor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], rng: RandomSource = None) -> "MarkovModel":
        try:
            elements = list(data["elements"])
            cm_dist = data["cm_dist"]
            pre_index = data["pre_index"]
        except (KeyError, TypeError) as e:
            raise InvalidModel(f"persisted model is missing field {e}") from e
        cursor = None if pre_index == len(elements) else pre_index
        return cls(elements, cm_dist, cursor=cursor, rng=rng)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, s: str, rng: RandomSource = None) -> "MarkovModel":
        try:
            raw = json.loads(s)
        except json.JSONDecodeError as e:
            raise InvalidModel(f"persisted model is not valid JSON: {e}") from e
        return cls.from_dict(raw, rng=rng)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: Union[str, Path], rng: RandomSource = None) -> "MarkovModel":
        try:
            text = Path(path).read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidModel(f"persisted model is not valid UTF-8: {e}") from e
        return cls.from_json(text, rng=rng)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarkovModel):
            return NotImplemented
        return (
            self._elements == other._elements
            and np.array_equal(self._cm_dist, other._cm_dist)
            and self._cursor == other._cursor
        )

    __hash__ = None  # mutable cursor

    def __repr__(self) -> str:
        state = "fresh" if self._cursor is None else f"at={self._cursor}"
        return f"MarkovModel(states={len(self._elements)}, live={len(self._live)}, {state})"


_MODEL_NAME = re.compile(r"^[A-Za-z0-9_-]+$")


class MarkovModelRegistry:
    """
    Named in-memory Markov models with optional on-disk persistence.

    Each model is guarded by its own lock, so concurrent requests against
    the same model are serialised while different models run independently.
    """

    def __init__(self, model_dir: Optional[Union[str, Path]] = None, default_seed: Optional[int] = None):
        """
        Args:
            model_dir: Directory holding ``<name>.json`` files (None disables save/load)
            default_seed: Seed used when ``train`` is called without one
        """
        self.model_dir = Path(model_dir) if model_dir else None
        self.default_seed = default_seed
        self._models: Dict[str, MarkovModel] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def _check_name(name: str) -> str:
        if not _MODEL_NAME.match(name or ""):
            raise ValueError(f"invalid model name: {name!r}")
        return name

    def _path(self, name: str) -> Path:
        if self.model_dir is None:
            raise MarkovError("no model directory configured")
        return self.model_dir / f"{self._check_name(name)}.json"

    def _put(self, name: str, model: MarkovModel):
        with self._guard:
            self._models[name] = model
            self._locks.setdefault(name, threading.Lock())

    def _entry(self, name: str):
        with self._guard:
            return self._models[name], self._locks[name]

    def train(self, name: str, tokens: Iterable[Any], seed: Optional[int] = None) -> MarkovModel:
        self._check_name(name)
        model = MarkovModel.build(tokens, rng=seed if seed is not None else self.default_seed)
        self._put(name, model)
        logger.info(f"[Markov] Trained '{name}': {len(model)} states, {len(model.live_states())} live")
        return model

    def get(self, name: str) -> MarkovModel:
        return self._entry(name)[0]

    def names(self) -> List[str]:
        with self._guard:
            return sorted(self._models)

    def next(self, name: str, count: int = 1) -> List[Any]:
        model, lock = self._entry(name)
        with lock:
            return model.generate(count)

    def reset(self, name: str):
        model, lock = self._entry(name)
        with lock:
            model.initialize()

    def export(self, name: str) -> Dict[str, Any]:
        model, lock = self._entry(name)
        with lock:
            return model.to_dict()

    def remove(self, name: str):
        with self._guard:
            del self._models[name]
            self._locks.pop(name, None)

    def save(self, name: str) -> Path:
        model, lock = self._entry(name)
        path = self._path(name)
        with lock:
            model.save(path)
        logger.info(f"[Markov] Saved '{name}' to {path}")
        return path

    def load(self, name: str, seed: Optional[int] = None) -> MarkovModel:
        path = self._path(name)
        model = MarkovModel.load(path, rng=seed if seed is not None else self.default_seed)
        self._put(name, model)
        logger.info(f"[Markov] Loaded '{name}' from {path}")
        return model

    def load_all(self) -> List[str]:
        """Load every ``*.json`` model in the model directory; returns loaded names."""
        if self.model_dir is None or not self.model_dir.is_dir():
            return []
        loaded = []
        for path in sorted(self.model_dir.glob("*.json")):
            if not _MODEL_NAME.match(path.stem):
                continue
            try:
                self.load(path.stem)
            except InvalidModel as e:
                logger.warning(f"[Markov] Skipping {path.name}: {e}")
                continue
            loaded.append(path.stem)
        return loaded


# Singleton registry
_REGISTRY: Optional[MarkovModelRegistry] = None


def get_markov_registry() -> MarkovModelRegistry:
    """Get or create the registry configured from settings."""
    global _REGISTRY
    if _REGISTRY is None:
        from markovgen.config import settings

        _REGISTRY = MarkovModelRegistry(
            model_dir=settings.MARKOV_MODEL_DIR,
            default_seed=settings.MARKOV_DEFAULT_SEED,
        )
    return _REGISTRY


def train_from_sequence(tokens: Iterable[Any], seed: Optional[int] = None) -> MarkovModel:
    return MarkovModel.build(tokens, rng=seed)
