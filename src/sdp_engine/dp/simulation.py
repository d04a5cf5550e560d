"""Forward simulation of the optimal policy on noise scenarios."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Sequence

import numpy as np

from sdp_engine.core.model import LinearSPModel, StochDynProgModel, as_dp_model
from sdp_engine.core.noise import make_rng
from sdp_engine.core.params import SDPParameters
from sdp_engine.core.types import SimulationResult, Trajectory
from sdp_engine.dp.backward_induction import as_scalar, as_state
from sdp_engine.dp.policy import get_control_dh, get_control_hd
from sdp_engine.dp.value_functions import ValueFunctions

logger = logging.getLogger(__name__)


def forward_single_simulation(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    scenario: np.ndarray,
    values: ValueFunctions,
    x0: Sequence[float] | None = None,
    rng: np.random.Generator | None = None,
) -> Trajectory:
    """Replay the optimal policy along one noise scenario.

    Under decision-hazard the control of stage ``t`` is chosen without
    looking at ``scenario[t]``; under hazard-decision it is chosen knowing it.
    In both cases ``scenario[t]`` is then applied to the dynamics and cost.

    Args:
        model: Problem being simulated.
        params: Parameters used to compute ``values``.
        scenario: ``(TF - 1, dim_noises)`` realized noises.
        values: Value functions from
            :func:`~sdp_engine.dp.backward_induction.compute_value_functions`.
        x0: Starting state; defaults to ``model.initial_state``.
        rng: Generator for Monte Carlo control queries; one seeded from
            ``params.seed`` is created when omitted, so successive stages draw
            different samples.

    Returns:
        The realized :class:`Trajectory`.
    """
    model = as_dp_model(model)
    params.validate_for(model)
    n_stages = model.stage_number
    scenario = _check_scenario(model, np.asarray(scenario, dtype=np.float64))
    start = model.initial_state if x0 is None else tuple(x0)
    if len(start) != model.dim_states:
        raise ValueError(f"Expected a starting state of dimension {model.dim_states}.")

    states = np.zeros((n_stages, model.dim_states), dtype=np.float64)
    controls = np.zeros((n_stages - 1, model.dim_controls), dtype=np.float64)
    states[0] = start
    total_cost = 0.0
    if params.is_monte_carlo and rng is None:
        rng = make_rng(params.seed)

    for t in range(n_stages - 1):
        x = states[t]
        w = scenario[t]
        if params.is_decision_hazard:
            u = get_control_dh(model, params, values, t, x, rng=rng)
        else:
            u = get_control_hd(model, params, values, t, x, w)
        controls[t] = u
        total_cost += as_scalar(model.cost(t, x, u, w))
        states[t + 1] = as_state(model.dynamics(t, x, u, w))

    total_cost += as_scalar(model.final_cost(states[n_stages - 1]))
    return Trajectory(total_cost=total_cost, states=states, controls=controls)


def forward_simulation(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
    scenarios: np.ndarray,
    values: ValueFunctions,
) -> SimulationResult:
    """Simulate the optimal policy on a batch of independent scenarios.

    Args:
        scenarios: ``(TF - 1, n, dim_noises)`` array, as returned by
            :func:`~sdp_engine.core.noise.simulate_scenarios`.

    Returns:
        Costs, states and controls for every scenario.
    """
    model = as_dp_model(model)
    params.validate_for(model)
    scenarios = np.asarray(scenarios, dtype=np.float64)
    if scenarios.ndim != 3:
        raise ValueError(f"scenarios must be 3-D (T, n, dim), got shape {scenarios.shape}.")
    n_scenarios = scenarios.shape[1]
    if n_scenarios == 0:
        raise ValueError("At least one scenario is required.")

    # One child seed per scenario keeps Monte Carlo queries independent of scheduling.
    if params.is_monte_carlo:
        seeds = np.random.SeedSequence(params.seed).spawn(n_scenarios)
    else:
        seeds = [None] * n_scenarios

    def run(k: int) -> Trajectory:
        rng = np.random.default_rng(seeds[k]) if seeds[k] is not None else None
        return forward_single_simulation(
            model, params, scenarios[:, k, :], values, rng=rng
        )

    indices = range(n_scenarios)
    if params.n_workers > 1:
        with ThreadPoolExecutor(max_workers=params.n_workers) as executor:
            trajectories = _collect(executor.map(run, indices), n_scenarios, params)
    else:
        trajectories = _collect(map(run, indices), n_scenarios, params)

    costs = np.array([traj.total_cost for traj in trajectories], dtype=np.float64)
    states = np.stack([traj.states for traj in trajectories], axis=1)
    controls = np.stack([traj.controls for traj in trajectories], axis=1)
    logger.info(
        "Simulated %d scenarios: mean cost %.6g (std %.6g).",
        n_scenarios,
        float(costs.mean()),
        float(costs.std()),
    )
    return SimulationResult(costs=costs, states=states, controls=controls)


def _collect(results, total: int, params: SDPParameters) -> list[Trajectory]:
    if not params.show_progress:
        return list(results)
    from tqdm.auto import tqdm

    return list(
        tqdm(results, total=total, desc="Forward Simulation", dynamic_ncols=True, leave=False)
    )


def _check_scenario(model: StochDynProgModel, scenario: np.ndarray) -> np.ndarray:
    n_steps = model.stage_number - 1
    if scenario.ndim == 1 and model.dim_noises == 1:
        scenario = scenario.reshape(-1, 1)
    if scenario.ndim == 3 and scenario.shape[1] == 1:
        scenario = scenario[:, 0, :]
    if scenario.shape != (n_steps, model.dim_noises):
        raise ValueError(
            f"Expected a scenario of shape ({n_steps}, {model.dim_noises}), "
            f"got {scenario.shape}."
        )
    return scenario
