from __future__ import annotations

import numpy as np
import pytest

from sdp_engine.core.model import LinearSPModel, StochDynProgModel
from sdp_engine.core.noise import NoiseLaw, deterministic_law, simulate_scenarios
from sdp_engine.core.params import SDPParameters
from sdp_engine.dp.backward_induction import compute_value_functions, solve_dp
from sdp_engine.dp.policy import get_bellman_value
from sdp_engine.dp.simulation import forward_simulation, forward_single_simulation
from sdp_engine.models.stock import StockModelConfig, build_stock_model


def _params(info_structure: str, **kwargs) -> SDPParameters:
    return SDPParameters(
        state_steps=(1.0,),
        control_steps=(1.0,),
        info_structure=info_structure,
        **kwargs,
    )


@pytest.mark.parametrize("info_structure", ["DH", "HD"])
def test_single_simulation_recovers_bellman_value(info_structure, depletion_model) -> None:
    params = _params(info_structure)
    values = compute_value_functions(depletion_model, params)

    trajectory = forward_single_simulation(depletion_model, params, np.zeros((1, 1)), values)

    assert trajectory.total_cost == pytest.approx(4.5)
    assert trajectory.total_cost == pytest.approx(get_bellman_value(depletion_model, params, values))
    np.testing.assert_array_equal(trajectory.states[:, 0], [5.0, 4.0])
    np.testing.assert_array_equal(trajectory.controls[:, 0], [1.0])


@pytest.mark.parametrize("info_structure", ["DH", "HD"])
def test_deterministic_tracking_replays_value_function(info_structure, tracking_model_factory) -> None:
    model = tracking_model_factory(
        (deterministic_law(1.0), deterministic_law(-1.0), deterministic_law(0.0))
    )
    params = _params(info_structure)
    values = compute_value_functions(model, params)

    trajectory = forward_single_simulation(model, params, [1.0, -1.0, 0.0], values)

    assert trajectory.states.shape == (4, 1)
    assert trajectory.controls.shape == (3, 1)
    assert trajectory.total_cost == pytest.approx(values.at(0, model.initial_state))


def test_single_simulation_accepts_an_explicit_start(depletion_model) -> None:
    params = _params("DH")
    values = compute_value_functions(depletion_model, params)

    trajectory = forward_single_simulation(depletion_model, params, [0.0], values, x0=(0.0,))

    assert trajectory.total_cost == 0.0
    np.testing.assert_array_equal(trajectory.controls[:, 0], [0.0])


def test_single_simulation_rejects_bad_scenarios(depletion_model) -> None:
    params = _params("DH")
    values = compute_value_functions(depletion_model, params)

    with pytest.raises(ValueError, match="scenario of shape"):
        forward_single_simulation(depletion_model, params, np.zeros((3, 1)), values)
    with pytest.raises(ValueError, match="starting state"):
        forward_single_simulation(depletion_model, params, [0.0], values, x0=(1.0, 2.0))


def test_batch_simulation_shapes_and_frame(tracking_model_factory, symmetric_noise) -> None:
    model = tracking_model_factory((symmetric_noise,) * 3)
    params = _params("HD")
    values = compute_value_functions(model, params)
    scenarios = simulate_scenarios(model.noises, 12, rng=5)

    result = forward_simulation(model, params, scenarios, values)

    assert result.n_scenarios == 12
    assert result.costs.shape == (12,)
    assert result.states.shape == (4, 12, 1)
    assert result.controls.shape == (3, 12, 1)
    assert np.all(result.states[0] == 2.0)
    assert result.mean_cost == pytest.approx(float(result.costs.mean()))

    single = result.trajectory(4)
    replay = forward_single_simulation(model, params, scenarios[:, 4, :], values)
    assert single.total_cost == pytest.approx(replay.total_cost)
    np.testing.assert_array_equal(single.states, replay.states)

    frame = result.to_frame()
    assert list(frame.columns) == ["scenario", "stage", "x0", "u0", "total_cost"]
    assert len(frame) == 12 * 4
    assert frame.loc[frame["stage"] == 3, "u0"].isna().all()
    assert frame.loc[frame["stage"] < 3, "u0"].notna().all()


@pytest.mark.parametrize("expectation", ["exact", "monte_carlo"])
def test_parallel_batch_matches_serial(expectation, tracking_model_factory, symmetric_noise) -> None:
    model = tracking_model_factory((symmetric_noise,) * 2)
    common = dict(expectation=expectation, monte_carlo_size=15, seed=9)
    serial_params = _params("DH", n_workers=1, **common)
    parallel_params = _params("DH", n_workers=4, **common)
    values = compute_value_functions(model, serial_params)
    scenarios = simulate_scenarios(model.noises, 10, rng=1)

    serial = forward_simulation(model, serial_params, scenarios, values)
    parallel = forward_simulation(model, parallel_params, scenarios, values)

    np.testing.assert_array_equal(parallel.costs, serial.costs)
    np.testing.assert_array_equal(parallel.controls, serial.controls)


def test_batch_simulation_rejects_malformed_input(depletion_model) -> None:
    params = _params("DH")
    values = compute_value_functions(depletion_model, params)

    with pytest.raises(ValueError, match="3-D"):
        forward_simulation(depletion_model, params, np.zeros((1, 4)), values)
    with pytest.raises(ValueError, match="At least one scenario"):
        forward_simulation(depletion_model, params, np.zeros((1, 0, 1)), values)


@pytest.mark.parametrize("info_structure", ["DH", "HD"])
def test_stock_model_end_to_end(info_structure) -> None:
    model = build_stock_model(StockModelConfig())
    params = _params(info_structure)
    values = compute_value_functions(model, params)
    scenarios = simulate_scenarios(model.noises, 30, rng=2015)

    bellman_value = get_bellman_value(model, params, values)
    result = forward_simulation(model, params, scenarios, values)

    assert np.isfinite(bellman_value)
    assert np.all(np.isfinite(result.costs))
    assert np.all((result.states >= 0.0) & (result.states <= 10.0))
    assert np.all((result.controls >= 0.0) & (result.controls <= 4.0))


def test_hazard_decision_stock_value_is_not_worse() -> None:
    model = build_stock_model(StockModelConfig())
    dh = get_bellman_value(model, _params("DH"), compute_value_functions(model, _params("DH")))
    hd = get_bellman_value(model, _params("HD"), compute_value_functions(model, _params("HD")))

    assert hd <= dh + 1e-9


@pytest.mark.parametrize("info_structure", ["DH", "HD"])
def test_linear_model_simulates_end_to_end(info_structure) -> None:
    linear = LinearSPModel(
        state_bounds=((0.0, 4.0),),
        control_bounds=((0.0, 2.0),),
        stage_number=3,
        noises=(deterministic_law(0.0), deterministic_law(0.0)),
        dynamics=lambda t, x, u, w: np.minimum(x + u, 4.0),
        cost=lambda t, x, u, w: 0.5 * u[0],
        initial_state=(0.0,),
        final_cost=lambda x: -x[0],
    )
    params = _params(info_structure)
    values = solve_dp(linear, params)

    result = forward_simulation(linear, params, np.zeros((2, 2, 1)), values)
    single = forward_single_simulation(linear, params, np.zeros((2, 1)), values)

    bellman_value = get_bellman_value(linear, params, values)
    assert bellman_value == pytest.approx(-2.0)
    np.testing.assert_allclose(result.costs, [bellman_value, bellman_value])
    assert single.total_cost == pytest.approx(bellman_value)
    np.testing.assert_array_equal(single.states[:, 0], [0.0, 2.0, 4.0])


def test_monte_carlo_simulation_draws_new_samples_at_each_stage() -> None:
    sampled: list[tuple[int, float]] = []
    realized = 100.0

    def cost(t, x, u, w):
        if w[0] != realized:
            sampled.append((t, float(w[0])))
        return 0.0

    law = NoiseLaw.from_arrays(np.arange(10.0), np.full(10, 0.1))
    model = StochDynProgModel(
        state_bounds=((0.0, 1.0),),
        control_bounds=((0.0, 1.0),),
        stage_number=3,
        noises=(law, law),
        dynamics=lambda t, x, u, w: x,
        cost=cost,
    )
    params = _params("DH", expectation="monte_carlo", monte_carlo_size=5, seed=4)
    values = compute_value_functions(model, params)
    sampled.clear()

    forward_single_simulation(model, params, np.full((2, 1), realized), values, x0=(0.0,))

    first_stage = [w for t, w in sampled if t == 0]
    second_stage = [w for t, w in sampled if t == 1]
    # Two controls share each sample set.
    assert len(first_stage) == len(second_stage) == 10
    assert first_stage[:5] == first_stage[5:]
    assert first_stage[:5] != second_stage[:5]


def test_monte_carlo_simulation_is_reproducible_without_rng(tracking_model_factory, symmetric_noise) -> None:
    model = tracking_model_factory((symmetric_noise,) * 2)
    params = _params("DH", expectation="monte_carlo", monte_carlo_size=10, seed=21)
    values = compute_value_functions(model, params)
    scenario = np.array([[1.0], [-1.0]])

    implicit = forward_single_simulation(model, params, scenario, values)
    explicit = forward_single_simulation(
        model, params, scenario, values, rng=np.random.default_rng(21)
    )

    assert implicit.total_cost == explicit.total_cost
    np.testing.assert_array_equal(implicit.controls, explicit.controls)
