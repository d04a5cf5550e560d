"""Tests for grid construction and coordinate/index conversion."""

from __future__ import annotations

import numpy as np
import pytest

from sdp_engine.dp.discretization import (
    discretize,
    index_from_variable,
    is_feasible,
    real_index_from_variable,
)


def test_discretize_includes_reachable_upper_bound() -> None:
    grid = discretize(((0.0, 1.0),), (0.1,))

    assert grid.shape == (11,)
    assert grid.axes[0][0] == 0.0
    assert grid.axes[0][-1] == 1.0


def test_discretize_stops_below_unreachable_upper_bound() -> None:
    grid = discretize(((0.0, 1.0),), (0.3,))

    np.testing.assert_allclose(grid.axes[0], [0.0, 0.3, 0.6, 0.9])


def test_points_are_enumerated_row_major() -> None:
    grid = discretize(((0.0, 2.0), (10.0, 11.0)), (1.0, 0.5))

    points = grid.points()
    assert grid.shape == (3, 3)
    assert points.shape == (9, 2)
    for flat, multi_index in enumerate(np.ndindex(*grid.shape)):
        expected = [grid.axes[d][i] for d, i in enumerate(multi_index)]
        np.testing.assert_array_equal(points[flat], expected)

    iterated = list(grid.iter_points())
    assert [idx for idx, _ in iterated] == list(np.ndindex(*grid.shape))
    np.testing.assert_array_equal(np.vstack([x for _, x in iterated]), points)


def test_index_conversions_round_trip_on_grid_points() -> None:
    bounds = ((-1.0, 1.0), (0.0, 3.0))
    steps = (0.5, 1.5)
    grid = discretize(bounds, steps)

    for multi_index, x in grid.iter_points():
        assert index_from_variable(x, bounds, steps) == multi_index
        np.testing.assert_allclose(real_index_from_variable(x, bounds, steps), multi_index)


def test_real_index_is_fractional_off_grid() -> None:
    real = real_index_from_variable([0.25, 2.25], ((0.0, 1.0), (0.0, 3.0)), (0.5, 1.5))
    np.testing.assert_allclose(real, [0.5, 1.5])


def test_is_feasible_checks_every_coordinate() -> None:
    bounds = ((0.0, 1.0), (-2.0, 2.0))

    assert is_feasible([0.0, 2.0], bounds)
    assert is_feasible([1.0 + 1e-12, -2.0], bounds)
    assert not is_feasible([1.1, 0.0], bounds)
    assert not is_feasible([0.5, -2.5], bounds)
    assert not is_feasible([float("nan"), 0.0], bounds)


@pytest.mark.parametrize("steps", [(0.0,), (-0.5,), (1.0, 1.0)])
def test_discretize_rejects_bad_steps(steps) -> None:
    with pytest.raises(ValueError):
        discretize(((0.0, 1.0),), steps)


def test_grid_extent_stops_at_last_point_when_step_does_not_divide() -> None:
    grid = discretize(((0.0, 1.0),), (0.3,))

    assert grid.extent[0][0] == 0.0
    assert grid.extent[0][1] == pytest.approx(0.9)
    assert is_feasible([0.95], grid.bounds)
    assert not grid.contains([0.95])
    assert grid.contains([0.9 + 1e-10])


def test_grid_extent_matches_bounds_on_dividing_step() -> None:
    grid = discretize(((0.0, 1.0), (-2.0, 2.0)), (0.1, 0.5))

    assert grid.extent == grid.bounds
    assert grid.contains([1.0, -2.0])


def test_snapped_index_stays_on_grid_for_small_steps() -> None:
    grid = discretize(((0.0, 0.001),), (1e-4,))
    x = [0.001 + 5e-10]

    assert grid.contains(x)
    assert grid.real_index_of(x)[0] > grid.shape[0] - 1 + 1e-6
    np.testing.assert_array_equal(grid.snapped_index_of(x), [grid.shape[0] - 1])
    np.testing.assert_array_equal(grid.snapped_index_of([-5e-10]), [0.0])
