"""Serialization helpers for SDP run artifacts."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import yaml

from sdp_engine.core.params import SDPParameters
from sdp_engine.dp.discretization import discretize
from sdp_engine.dp.value_functions import ValueFunctions


REQUIRED_RUN_FILES: tuple[str, ...] = (
    "config_resolved.yaml",
    "values.npy",
    "summary.json",
)
TRAJECTORIES_FILE = "trajectories.csv"


@dataclass(frozen=True, eq=False)
class LoadedRunArtifacts:
    """Structured artifacts loaded from an SDP run directory."""

    run_dir: Path
    params: SDPParameters
    config_resolved: dict[str, Any]
    value_functions: ValueFunctions
    summary: dict[str, Any]
    trajectories: pd.DataFrame | None


def ensure_run_dir(run_dir: Path) -> None:
    """Create run directory and parent paths."""
    run_dir.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, payload: Any) -> None:
    """Write JSON with stable formatting."""
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def write_yaml(path: Path, payload: Any) -> None:
    """Write YAML with stable formatting."""
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")


def write_value_functions(path: Path, value_functions: ValueFunctions) -> None:
    """Persist the dense value-function array in ``.npy`` format."""
    np.save(path, value_functions.values, allow_pickle=False)


def write_trajectories(path: Path, frame: pd.DataFrame) -> None:
    """Persist simulated trajectories as CSV."""
    frame.to_csv(path, index=False)


def build_config_payload(
    *,
    params: SDPParameters,
    state_bounds: tuple[tuple[float, float], ...],
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble the ``config_resolved.yaml`` payload of a run."""
    payload: dict[str, Any] = {
        "params": params.to_dict(),
        "state_bounds": [list(pair) for pair in state_bounds],
    }
    if extra:
        payload.update(extra)
    return payload


def load_run_artifacts(run_dir: Path) -> LoadedRunArtifacts:
    """Load all required artifacts from a run directory."""
    missing = [name for name in REQUIRED_RUN_FILES if not (run_dir / name).exists()]
    if missing:
        raise FileNotFoundError(
            f"Missing required run artifacts in {run_dir}: {', '.join(missing)}"
        )

    config_resolved = yaml.safe_load((run_dir / "config_resolved.yaml").read_text())
    if not isinstance(config_resolved, dict):
        raise ValueError("config_resolved.yaml must contain a YAML mapping.")

    params_payload = config_resolved.get("params")
    if not isinstance(params_payload, dict):
        raise ValueError("config_resolved.yaml missing 'params' payload.")
    params = SDPParameters.from_dict(params_payload)

    raw_bounds = config_resolved.get("state_bounds")
    if not isinstance(raw_bounds, list):
        raise ValueError("config_resolved.yaml missing 'state_bounds' payload.")
    state_bounds = tuple((float(low), float(high)) for low, high in raw_bounds)
    grid = discretize(state_bounds, params.state_steps)

    values = np.load(run_dir / "values.npy", allow_pickle=False)
    if values.shape[:-1] != grid.shape:
        raise ValueError(
            f"values.npy has shape {values.shape}, expected grid shape {grid.shape} "
            "plus a stage axis."
        )
    value_functions = ValueFunctions(values=values, grid=grid).freeze()

    summary = json.loads((run_dir / "summary.json").read_text())
    trajectories_path = run_dir / TRAJECTORIES_FILE
    trajectories = pd.read_csv(trajectories_path) if trajectories_path.exists() else None

    return LoadedRunArtifacts(
        run_dir=run_dir,
        params=params,
        config_resolved=config_resolved,
        value_functions=value_functions,
        summary=summary,
        trajectories=trajectories,
    )
