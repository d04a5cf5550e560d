"""Solve the stock management problem by SDP and persist run artifacts."""

from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import datetime, timezone
import logging
from pathlib import Path

from sdp_engine.core.noise import simulate_scenarios
from sdp_engine.core.params import (
    EXPECTATION_MODES,
    INFO_STRUCTURES,
    SDPParameters,
    load_sdp_parameters,
)
from sdp_engine.dp.artifacts import (
    TRAJECTORIES_FILE,
    build_config_payload,
    ensure_run_dir,
    write_json,
    write_trajectories,
    write_value_functions,
    write_yaml,
)
from sdp_engine.dp.backward_induction import compute_value_functions
from sdp_engine.dp.policy import get_bellman_value
from sdp_engine.dp.simulation import forward_simulation
from sdp_engine.models.stock import StockModelConfig, build_stock_model


def main() -> int:
    parser = argparse.ArgumentParser(description="Solve the stock problem via SDP.")
    parser.add_argument(
        "--solver-config",
        type=Path,
        default=Path("configs/sdp/solver.yaml"),
        help="Path to SDP solver config YAML.",
    )
    parser.add_argument(
        "--run-dir",
        type=Path,
        default=None,
        help="Optional explicit output run directory.",
    )
    parser.add_argument("--tag", default="manual", help="Tag used in default run directory.")
    parser.add_argument("--info-structure", choices=INFO_STRUCTURES, default=None)
    parser.add_argument("--expectation", choices=EXPECTATION_MODES, default=None)
    parser.add_argument("--monte-carlo-size", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--n-workers", type=int, default=None)
    parser.add_argument(
        "--n-scenarios",
        type=int,
        default=100,
        help="Number of demand scenarios simulated with the optimal policy.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable tqdm progress bars.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    params = _resolve_params(args)
    model = build_stock_model(StockModelConfig())
    params.validate_for(model)

    values = compute_value_functions(model, params)
    bellman_value = get_bellman_value(model, params, values)

    scenarios = simulate_scenarios(model.noises, args.n_scenarios, rng=params.seed)
    simulation = forward_simulation(model, params, scenarios, values)

    run_dir = args.run_dir or _default_run_dir(tag=args.tag)
    ensure_run_dir(run_dir)

    config_payload = build_config_payload(
        params=params,
        state_bounds=model.state_bounds,
        extra={
            "created_at_utc": datetime.now(timezone.utc).isoformat(),
            "solver_config_path": str(args.solver_config),
            "model": "stock",
            "n_scenarios": args.n_scenarios,
        },
    )
    summary = {
        "bellman_value": bellman_value,
        "simulated_mean_cost": simulation.mean_cost,
        "simulated_cost_std": float(simulation.costs.std()),
        "n_scenarios": simulation.n_scenarios,
        "value_function_shape": list(values.shape),
    }

    write_yaml(run_dir / "config_resolved.yaml", config_payload)
    write_value_functions(run_dir / "values.npy", values)
    write_json(run_dir / "summary.json", summary)
    write_trajectories(run_dir / TRAJECTORIES_FILE, simulation.to_frame())

    print(f"Run directory: {run_dir}")
    print(f"Value obtained by SDP: {bellman_value:.6f}")
    print(
        f"Simulated cost over {simulation.n_scenarios} scenarios: "
        f"mean={simulation.mean_cost:.6f}, std={float(simulation.costs.std()):.6f}"
    )
    return 0


def _resolve_params(args: argparse.Namespace) -> SDPParameters:
    if args.solver_config.exists():
        params = load_sdp_parameters(args.solver_config)
    else:
        params = SDPParameters(state_steps=(1.0,), control_steps=(1.0,))

    overrides: dict[str, object] = {}
    if args.info_structure is not None:
        overrides["info_structure"] = args.info_structure
    if args.expectation is not None:
        overrides["expectation"] = args.expectation
    if args.monte_carlo_size is not None:
        overrides["monte_carlo_size"] = args.monte_carlo_size
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.n_workers is not None:
        overrides["n_workers"] = args.n_workers
    overrides["show_progress"] = not args.no_progress
    return replace(params, **overrides)


def _default_run_dir(tag: str) -> Path:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    safe_tag = "".join(ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in tag)
    return Path("runs") / "sdp" / f"{timestamp}_{safe_tag}"


if __name__ == "__main__":
    raise SystemExit(main())
