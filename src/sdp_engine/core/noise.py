"""Discrete probability laws for stage-wise independent noises."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from typing import Sequence

import numpy as np

PROBA_TOL = 1e-8


@dataclass(frozen=True, eq=False)
class NoiseLaw:
    """Discrete distribution of the noise at one stage.

    Attributes:
        support: ``dim x support_size`` array; column ``k`` is outcome ``k``.
        proba: Probability of each outcome, length ``support_size``.
    """

    support: np.ndarray
    proba: np.ndarray

    def __post_init__(self) -> None:
        support = np.array(self.support, dtype=np.float64)
        proba = np.array(self.proba, dtype=np.float64)
        if support.ndim != 2:
            raise ValueError(f"support must be 2-D, got shape {support.shape}.")
        if proba.ndim != 1:
            raise ValueError(f"proba must be 1-D, got shape {proba.shape}.")
        if proba.size == 0:
            raise ValueError("A noise law needs at least one outcome.")
        if support.shape[1] != proba.size:
            raise ValueError(
                f"support has {support.shape[1]} columns but proba has "
                f"{proba.size} entries."
            )
        if not np.all(np.isfinite(proba)) or np.any(proba < 0.0):
            raise ValueError("proba must contain finite non-negative values.")
        total = float(proba.sum())
        if abs(total - 1.0) > PROBA_TOL:
            raise ValueError(f"proba must sum to 1, got {total:.12g}.")

        support.setflags(write=False)
        proba.setflags(write=False)
        object.__setattr__(self, "support", support)
        object.__setattr__(self, "proba", proba)

    @property
    def support_size(self) -> int:
        return int(self.proba.size)

    @property
    def dim(self) -> int:
        return int(self.support.shape[0])

    @classmethod
    def from_arrays(cls, support: Sequence | np.ndarray, proba: Sequence | np.ndarray) -> "NoiseLaw":
        """Build a law, normalizing the array shapes first.

        A 1-D ``support`` is read as a scalar noise (``1 x N``). A ``proba``
        with two or more dimensions is flattened when all but one axis are
        singletons.
        """
        support_arr = np.asarray(support, dtype=np.float64)
        proba_arr = np.asarray(proba, dtype=np.float64)
        if support_arr.ndim == 0:
            support_arr = support_arr.reshape(1, 1)
        elif support_arr.ndim == 1:
            support_arr = support_arr.reshape(1, support_arr.size)
        if proba_arr.ndim == 0:
            proba_arr = proba_arr.reshape(1)
        elif proba_arr.ndim >= 2:
            squeezed = np.squeeze(proba_arr)
            if squeezed.ndim > 1:
                raise ValueError(
                    f"proba of shape {proba_arr.shape} cannot be read as a vector."
                )
            proba_arr = squeezed.reshape(-1)
        return cls(support=support_arr, proba=proba_arr)


def deterministic_law(value: float | Sequence[float]) -> NoiseLaw:
    """Return a single-outcome law located at ``value``."""
    support = np.atleast_1d(np.asarray(value, dtype=np.float64)).reshape(-1, 1)
    return NoiseLaw(support=support, proba=np.ones(1))


def noise_law_product(law: NoiseLaw, *laws: NoiseLaw) -> NoiseLaw:
    """Joint law of independent noises.

    Outcomes are enumerated in row-major order over the input laws (the first
    law's index varies slowest) and the support rows are stacked in argument
    order.
    """
    if not laws:
        return law
    if len(laws) > 1:
        return noise_law_product(law, noise_law_product(laws[0], *laws[1:]))

    other = laws[0]
    n_outcomes = law.support_size * other.support_size
    support = np.zeros((law.dim + other.dim, n_outcomes), dtype=np.float64)
    proba = np.zeros(n_outcomes, dtype=np.float64)
    for count, (i, j) in enumerate(product(range(law.support_size), range(other.support_size))):
        proba[count] = law.proba[i] * other.proba[j]
        support[:, count] = np.concatenate((law.support[:, i], other.support[:, j]))
    return NoiseLaw(support=support, proba=proba)


def make_rng(seed: int | np.random.Generator | None = None) -> np.random.Generator:
    """Return a numpy Generator from a seed, or pass a Generator through."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def sample(law: NoiseLaw, rng: np.random.Generator | None = None) -> np.ndarray:
    """Draw one outcome of ``law`` and return its support column."""
    generator = make_rng(rng)
    idx = generator.choice(law.support_size, p=law.proba)
    return law.support[:, idx].copy()


def sample_many(law: NoiseLaw, n: int, rng: np.random.Generator | None = None) -> np.ndarray:
    """Draw ``n`` independent outcomes as a ``dim x n`` array."""
    if n <= 0:
        raise ValueError("Number of samples must be positive.")
    generator = make_rng(rng)
    indices = generator.choice(law.support_size, size=n, p=law.proba)
    return law.support[:, indices].copy()


def simulate_scenarios(
    laws: Sequence[NoiseLaw],
    n: int,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Simulate ``n`` noise scenarios.

    Returns:
        Array of shape ``(T, n, dim)`` where ``scenarios[t, k]`` is the noise
        at stage ``t`` for scenario ``k``. Every entry is an independent draw.
    """
    if n <= 0:
        raise ValueError("Number of scenarios must be positive.")
    if not laws:
        raise ValueError("At least one noise law is required.")
    dim = laws[0].dim
    if any(law.dim != dim for law in laws):
        raise ValueError("All noise laws must share the same dimension.")

    generator = make_rng(rng)
    scenarios = np.zeros((len(laws), n, dim), dtype=np.float64)
    for t, law in enumerate(laws):
        indices = generator.choice(law.support_size, size=n, p=law.proba)
        scenarios[t] = law.support[:, indices].T
    return scenarios

