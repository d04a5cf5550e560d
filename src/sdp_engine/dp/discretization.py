"""Cartesian grids over state and control spaces."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
import math
from typing import Iterator, Sequence

import numpy as np

from sdp_engine.core.model import Bounds, StochDynProgModel
from sdp_engine.core.params import GRID_TOL, SDPParameters, grid_size

# Absolute slack accepted on bound checks, absorbs rounding in user dynamics.
FEASIBILITY_TOL = 1e-9


@dataclass(frozen=True, eq=False)
class Grid:
    """Regular cartesian grid.

    Attributes:
        bounds: ``(low, high)`` per dimension.
        steps: Step per dimension.
        axes: Sorted grid coordinates per dimension.
    """

    bounds: Bounds
    steps: tuple[float, ...]
    axes: tuple[np.ndarray, ...]

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(len(axis) for axis in self.axes)

    @property
    def ndim(self) -> int:
        return len(self.axes)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))

    def points(self) -> np.ndarray:
        """All grid points as a ``(size, ndim)`` array in row-major order."""
        return grid_points(self.axes)

    def iter_points(self) -> Iterator[tuple[tuple[int, ...], np.ndarray]]:
        """Yield ``(multi_index, point)`` pairs in row-major order."""
        index_ranges = [range(len(axis)) for axis in self.axes]
        for multi_index in product(*index_ranges):
            point = np.array(
                [axis[i] for axis, i in zip(self.axes, multi_index)],
                dtype=np.float64,
            )
            yield multi_index, point

    @property
    def extent(self) -> Bounds:
        """First and last grid coordinate per dimension.

        Differs from ``bounds`` when a step does not divide its range.
        """
        return tuple((float(axis[0]), float(axis[-1])) for axis in self.axes)

    def real_index_of(self, x: Sequence[float]) -> np.ndarray:
        return real_index_from_variable(x, self.bounds, self.steps)

    def snapped_index_of(self, x: Sequence[float]) -> np.ndarray:
        """Fractional index of ``x`` clipped onto the grid.

        Only meaningful for points accepted by :meth:`contains`.
        """
        upper = np.array(self.shape, dtype=np.float64) - 1.0
        return np.clip(self.real_index_of(x), 0.0, upper)

    def contains(self, x: Sequence[float]) -> bool:
        """Whether ``x`` lies within the grid extent, up to ``FEASIBILITY_TOL``."""
        return is_feasible(x, self.extent)


def validate_steps(steps: Sequence[float], bounds: Bounds) -> None:
    """Check that ``steps`` are positive and match ``bounds`` in length."""
    if len(steps) != len(bounds):
        raise ValueError(
            f"Got {len(steps)} steps for {len(bounds)} dimensions."
        )
    for step in steps:
        if not math.isfinite(step) or step <= 0.0:
            raise ValueError(f"Discretization steps must be positive, got {step}.")


def discretize(bounds: Bounds, steps: Sequence[float]) -> Grid:
    """Build the grid ``low, low + step, ...`` (up to ``high``) per dimension.

    ``high`` itself is included only when it lies on the lattice within
    tolerance.
    """
    steps = tuple(float(step) for step in steps)
    validate_steps(steps, bounds)
    axes: list[np.ndarray] = []
    for (low, high), step in zip(bounds, steps):
        n_points = grid_size(low, high, step)
        axis = low + step * np.arange(n_points, dtype=np.float64)
        # Snap the last point onto high when it is reached up to rounding.
        if abs(axis[-1] - high) <= GRID_TOL * step:
            axis[-1] = high
        axis.setflags(write=False)
        axes.append(axis)
    return Grid(bounds=tuple(bounds), steps=steps, axes=tuple(axes))


def state_grid(model: StochDynProgModel, params: SDPParameters) -> Grid:
    """Discretized state space of ``model``."""
    return discretize(model.state_bounds, params.state_steps)


def control_grid(model: StochDynProgModel, params: SDPParameters) -> Grid:
    """Discretized control space of ``model``."""
    return discretize(model.control_bounds, params.control_steps)


def grid_points(axes: Sequence[np.ndarray]) -> np.ndarray:
    """Cartesian product of ``axes`` as rows, last dimension varying fastest."""
    mesh = np.meshgrid(*axes, indexing="ij")
    return np.stack([m.ravel() for m in mesh], axis=-1)


def index_from_variable(
    x: Sequence[float],
    bounds: Bounds,
    steps: Sequence[float],
) -> tuple[int, ...]:
    """Integer multi-index of a point lying on the grid."""
    return tuple(
        int(round((float(value) - low) / step))
        for value, (low, _), step in zip(x, bounds, steps)
    )


def real_index_from_variable(
    x: Sequence[float],
    bounds: Bounds,
    steps: Sequence[float],
) -> np.ndarray:
    """Fractional 0-based multi-index of an arbitrary point.

    The result is meant for multilinear interpolation of grid values.
    """
    return np.array(
        [(float(value) - low) / step for value, (low, _), step in zip(x, bounds, steps)],
        dtype=np.float64,
    )


def is_feasible(x: Sequence[float], bounds: Bounds) -> bool:
    """Return whether every coordinate of ``x`` lies within its bounds."""
    if len(x) != len(bounds):
        return False
    for value, (low, high) in zip(x, bounds):
        value = float(value)
        if not math.isfinite(value):
            return False
        if value < low - FEASIBILITY_TOL or value > high + FEASIBILITY_TOL:
            return False
    return True
