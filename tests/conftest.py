"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys

import numpy as np
import pytest


def _preload_numpy_without_macos_check() -> None:
    """Preload NumPy while bypassing the macOS sanity check.

    This avoids a hard crash seen with some macOS BLAS/LAPACK builds during
    NumPy's import-time polyfit check.
    """
    if sys.platform != "darwin":
        return

    original_platform = sys.platform
    try:
        sys.platform = "linux"
        import numpy  # noqa: F401
    finally:
        sys.platform = original_platform


_preload_numpy_without_macos_check()


from sdp_engine.core.model import StochDynProgModel  # noqa: E402
from sdp_engine.core.noise import NoiseLaw, deterministic_law  # noqa: E402


def make_depletion_model(unit_cost: float = 1.0) -> StochDynProgModel:
    """Two-stage model: x in [0, 10], u in {0, 1}, x' = x - u, cost unit_cost * u."""
    return StochDynProgModel(
        state_bounds=((0.0, 10.0),),
        control_bounds=((0.0, 1.0),),
        stage_number=2,
        noises=(deterministic_law(0.0),),
        dynamics=lambda t, x, u, w: x - u,
        cost=lambda t, x, u, w: unit_cost * u[0],
        final_cost=lambda x: x[0],
        initial_state=(5.0,),
    )


def make_tracking_model(noises: tuple[NoiseLaw, ...]) -> StochDynProgModel:
    """Keep x near 5 with integer pushes; transitions are clipped into bounds."""

    def dynamics(t, x, u, w):
        return np.clip(x + u + w, 0.0, 10.0)

    def cost(t, x, u, w):
        next_state = min(max(x[0] + u[0] + w[0], 0.0), 10.0)
        return u[0] ** 2 + 3.0 * (next_state - 5.0) ** 2

    return StochDynProgModel(
        state_bounds=((0.0, 10.0),),
        control_bounds=((-2.0, 2.0),),
        stage_number=len(noises) + 1,
        noises=noises,
        dynamics=dynamics,
        cost=cost,
        final_cost=lambda x: abs(x[0] - 5.0),
        initial_state=(2.0,),
    )


@pytest.fixture
def depletion_model() -> StochDynProgModel:
    return make_depletion_model(unit_cost=0.5)


@pytest.fixture
def symmetric_noise() -> NoiseLaw:
    return NoiseLaw.from_arrays([-1.0, 0.0, 1.0], [0.25, 0.5, 0.25])


@pytest.fixture
def tracking_model_factory():
    return make_tracking_model


@pytest.fixture
def depletion_model_factory():
    return make_depletion_model
