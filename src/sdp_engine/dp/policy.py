"""Policy extraction from computed value functions."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from sdp_engine.core.errors import InfeasibleStateError
from sdp_engine.core.model import LinearSPModel, StochDynProgModel, as_dp_model
from sdp_engine.core.noise import make_rng
from sdp_engine.core.params import SDPParameters
from sdp_engine.dp.backward_induction import (
    bellman_backup_dh,
    expectation_samples,
    hd_outcome_backup,
    transition_values,
)
from sdp_engine.dp.discretization import control_grid
from sdp_engine.dp.value_functions import ValueFunctions


def get_control_dh(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    values: ValueFunctions,
    t: int,
    x: Sequence[float],
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Optimal decision-hazard control at stage ``t`` and state ``x``.

    Re-runs the stage minimization against ``V[..., t + 1]``. In Monte Carlo
    mode one sample set is drawn per call and shared by all controls; pass
    ``rng`` to control it, otherwise ``params.seed`` is used.

    Raises:
        ValueError: If ``params`` is not decision-hazard or ``t`` is not a
            decision stage.
        InfeasibleStateError: If no control is admissible.
    """
    if not params.is_decision_hazard:
        raise ValueError("Information structure must be decision-hazard ('DH').")
    model = as_dp_model(model)
    state = _check_query(model, values, t, x)
    generator = make_rng(rng if rng is not None else params.seed) if params.is_monte_carlo else None
    samples, probas = expectation_samples(model.noises[t], params, generator)
    controls = control_grid(model, params).points()
    admissible, transitions = transition_values(
        model=model,
        grid=values.grid,
        interpolant=values.interpolant(t + 1),
        t=t,
        x=state,
        controls=controls,
        samples=samples,
    )
    backup = bellman_backup_dh(admissible, transitions, probas)
    if backup is None:
        raise InfeasibleStateError(t, state, "No control keeps any noise outcome feasible.")
    return controls[backup[1]].copy()


def get_control_hd(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    values: ValueFunctions,
    t: int,
    x: Sequence[float],
    w: Sequence[float],
) -> np.ndarray:
    """Optimal hazard-decision control at stage ``t`` given the observed noise ``w``.

    Raises:
        ValueError: If ``params`` is not hazard-decision or the query is malformed.
        InfeasibleStateError: If no control is admissible for ``w``.
    """
    if params.is_decision_hazard:
        raise ValueError("Information structure must be hazard-decision ('HD').")
    model = as_dp_model(model)
    state = _check_query(model, values, t, x)
    noise = np.asarray(w, dtype=np.float64).reshape(-1)
    if noise.size != model.dim_noises:
        raise ValueError(f"Expected a noise of dimension {model.dim_noises}, got {noise.size}.")
    controls = control_grid(model, params).points()
    admissible, transitions = transition_values(
        model=model,
        grid=values.grid,
        interpolant=values.interpolant(t + 1),
        t=t,
        x=state,
        controls=controls,
        samples=noise.reshape(-1, 1),
    )
    backup = hd_outcome_backup(admissible[:, 0], transitions[:, 0])
    if backup is None:
        raise InfeasibleStateError(t, state, f"No control is admissible for noise {tuple(noise)}.")
    return controls[backup[1]].copy()


def get_control(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    values: ValueFunctions,
    t: int,
    x: Sequence[float],
    w: Sequence[float] | None = None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Dispatch to the control query matching ``params.info_structure``.

    Decision-hazard queries must not pass ``w``; hazard-decision queries must.
    """
    if params.is_decision_hazard:
        if w is not None:
            raise ValueError("Decision-hazard controls are chosen before the noise is observed.")
        return get_control_dh(model, params, values, t, x, rng=rng)
    if w is None:
        raise ValueError("Hazard-decision controls require the observed noise w.")
    return get_control_hd(model, params, values, t, x, w)


def get_bellman_value(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    values: ValueFunctions,
) -> float:
    """Expected optimal cost from the model's initial state at stage 0."""
    model = as_dp_model(model)
    if not model.initial_state:
        raise ValueError("The model has no initial_state.")
    if values.grid.steps != params.state_steps:
        raise ValueError("Value functions were computed with different state steps.")
    return values.at(0, model.initial_state)


def extract_policy_table(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    values: ValueFunctions,
    t: int,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Decision-hazard controls for every state grid point at stage ``t``.

    Returns:
        Array of shape ``grid.shape + (dim_controls,)``.
    """
    model = as_dp_model(model)
    table = np.zeros(values.grid.shape + (model.dim_controls,), dtype=np.float64)
    generator = make_rng(rng if rng is not None else params.seed) if params.is_monte_carlo else None
    for multi_index, x in values.grid.iter_points():
        table[multi_index] = get_control_dh(model, params, values, t, x, rng=generator)
    return table


def _check_query(
    model: StochDynProgModel,
    values: ValueFunctions,
    t: int,
    x: Sequence[float],
) -> np.ndarray:
    if not (0 <= t < model.stage_number - 1):
        raise ValueError(
            f"Stage {t} has no decision; expected 0 <= t < {model.stage_number - 1}."
        )
    if values.n_stages != model.stage_number:
        raise ValueError(
            f"Value functions have {values.n_stages} stages, model has {model.stage_number}."
        )
    state = np.asarray(x, dtype=np.float64).reshape(-1)
    if state.size != model.dim_states:
        raise ValueError(f"Expected a state of dimension {model.dim_states}, got {state.size}.")
    return state
