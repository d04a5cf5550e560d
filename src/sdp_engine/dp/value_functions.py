"""Stage-indexed value-function arrays and their multilinear interpolants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.ndimage import map_coordinates

from sdp_engine.core.errors import OffGridQueryError
from sdp_engine.dp.discretization import Grid

# Fractional indices this close outside the grid are clamped onto it.
INDEX_TOL = 1e-6


class StageInterpolant:
    """Multilinear interpolation of one value-function slice.

    Queries are fractional 0-based grid indices as produced by
    :func:`~sdp_engine.dp.discretization.real_index_from_variable`. Indices
    within ``INDEX_TOL`` of the grid are clamped onto it; anything further
    out raises :class:`OffGridQueryError` since no extrapolation is done.
    """

    def __init__(self, values: np.ndarray) -> None:
        self._values = np.asarray(values, dtype=np.float64)
        self._upper = np.array(self._values.shape, dtype=np.float64) - 1.0

    @property
    def shape(self) -> tuple[int, ...]:
        return self._values.shape

    def __call__(self, real_index: Sequence[float]) -> float:
        indices = np.asarray(real_index, dtype=np.float64).reshape(1, -1)
        return float(self.evaluate(indices)[0])

    def evaluate(self, indices: np.ndarray) -> np.ndarray:
        """Interpolate at a ``(k, ndim)`` batch of fractional indices."""
        indices = np.asarray(indices, dtype=np.float64)
        if indices.ndim != 2 or indices.shape[1] != self._values.ndim:
            raise ValueError(
                f"Expected indices of shape (k, {self._values.ndim}), got {indices.shape}."
            )
        if indices.shape[0] == 0:
            return np.zeros(0, dtype=np.float64)
        outside = (indices < -INDEX_TOL) | (indices > self._upper + INDEX_TOL)
        if np.any(outside) or not np.all(np.isfinite(indices)):
            bad = indices[np.any(outside | ~np.isfinite(indices), axis=1)][0]
            raise OffGridQueryError(
                f"Index {tuple(bad.tolist())} lies outside the grid of shape "
                f"{self._values.shape}."
            )
        clamped = np.clip(indices, 0.0, self._upper)
        return map_coordinates(
            self._values,
            clamped.T,
            order=1,
            mode="nearest",
            output=np.float64,
        )


@dataclass(frozen=True, eq=False)
class ValueFunctions:
    """Dense value functions ``V[i_1, ..., i_n, t]`` over a state grid.

    Attributes:
        values: Array of shape ``grid.shape + (n_stages,)``.
        grid: State grid indexing the leading axes.
    """

    values: np.ndarray
    grid: Grid

    @classmethod
    def empty(cls, grid: Grid, n_stages: int) -> "ValueFunctions":
        return cls(values=np.zeros(grid.shape + (n_stages,), dtype=np.float64), grid=grid)

    @property
    def n_stages(self) -> int:
        return int(self.values.shape[-1])

    @property
    def shape(self) -> tuple[int, ...]:
        return self.values.shape

    def stage(self, t: int) -> np.ndarray:
        """View of the slice ``V[..., t]``."""
        self._check_stage(t)
        return self.values[..., t]

    def interpolant(self, t: int) -> StageInterpolant:
        return StageInterpolant(self.stage(t))

    def at(self, t: int, x: Sequence[float]) -> float:
        """Interpolated value of stage ``t`` at the continuous point ``x``."""
        return self.interpolant(t)(self.grid.real_index_of(x))

    def freeze(self) -> "ValueFunctions":
        """Mark the array read-only and return ``self``."""
        self.values.setflags(write=False)
        return self

    def _check_stage(self, t: int) -> None:
        if not (0 <= t < self.n_stages):
            raise IndexError(f"Stage {t} out of range [0, {self.n_stages - 1}].")
