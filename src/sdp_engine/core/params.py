"""Solver parameters and YAML helpers for the SDP algorithm."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import math
from pathlib import Path
from typing import Any

import yaml

from sdp_engine.core.model import StochDynProgModel

DECISION_HAZARD = "DH"
HAZARD_DECISION = "HD"
INFO_STRUCTURES: tuple[str, ...] = (DECISION_HAZARD, HAZARD_DECISION)

EXACT = "exact"
MONTE_CARLO = "monte_carlo"
EXPECTATION_MODES: tuple[str, ...] = (EXACT, MONTE_CARLO)

# Grid points closer than this fraction of a step to the upper bound count as on it.
GRID_TOL = 1e-9


@dataclass(frozen=True)
class SDPParameters:
    """Discretization and algorithm settings for backward induction.

    Attributes:
        state_steps: Discretization step per state dimension.
        control_steps: Discretization step per control dimension.
        info_structure: ``"DH"`` (decide, then observe the noise) or ``"HD"``
            (observe the noise, then decide).
        expectation: ``"exact"`` sums over every noise outcome,
            ``"monte_carlo"`` averages ``monte_carlo_size`` draws.
        monte_carlo_size: Sample count, only read in Monte Carlo mode.
        seed: Seed of the Monte Carlo sampler; ``None`` draws fresh entropy.
        n_workers: Threads used per stage and per simulation batch.
        show_progress: Display a tqdm progress bar over stages.
        progress_desc: Label of the progress bar.
    """

    state_steps: tuple[float, ...]
    control_steps: tuple[float, ...]
    info_structure: str = DECISION_HAZARD
    expectation: str = EXACT
    monte_carlo_size: int = 1000
    seed: int | None = None
    n_workers: int = 1
    show_progress: bool = False
    progress_desc: str = "Backward Induction"

    def __post_init__(self) -> None:
        object.__setattr__(self, "state_steps", _as_float_tuple(self.state_steps))
        object.__setattr__(self, "control_steps", _as_float_tuple(self.control_steps))

    @property
    def is_decision_hazard(self) -> bool:
        return self.info_structure == DECISION_HAZARD

    @property
    def is_monte_carlo(self) -> bool:
        return self.expectation == MONTE_CARLO

    def validate(self) -> None:
        if self.info_structure not in INFO_STRUCTURES:
            raise ValueError(
                f"info_structure must be one of {INFO_STRUCTURES}, "
                f"got {self.info_structure!r}."
            )
        if self.expectation not in EXPECTATION_MODES:
            raise ValueError(
                f"expectation must be one of {EXPECTATION_MODES}, "
                f"got {self.expectation!r}."
            )
        if not self.state_steps:
            raise ValueError("state_steps must not be empty.")
        if not self.control_steps:
            raise ValueError("control_steps must not be empty.")
        for name, steps in (("state_steps", self.state_steps), ("control_steps", self.control_steps)):
            for step in steps:
                if not math.isfinite(step) or step <= 0.0:
                    raise ValueError(f"{name} must be positive and finite, got {step}.")
        if self.monte_carlo_size <= 0:
            raise ValueError("monte_carlo_size must be positive.")
        if self.n_workers <= 0:
            raise ValueError("n_workers must be positive.")

    def validate_for(self, model: StochDynProgModel) -> None:
        """Validate the parameters and their consistency with ``model``."""
        self.validate()
        if len(self.state_steps) != model.dim_states:
            raise ValueError(
                f"state_steps has {len(self.state_steps)} entries but the model "
                f"has {model.dim_states} state dimensions."
            )
        if len(self.control_steps) != model.dim_controls:
            raise ValueError(
                f"control_steps has {len(self.control_steps)} entries but the model "
                f"has {model.dim_controls} control dimensions."
            )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["state_steps"] = list(self.state_steps)
        payload["control_steps"] = list(self.control_steps)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SDPParameters":
        seed = payload.get("seed")
        return cls(
            state_steps=tuple(payload["state_steps"]),
            control_steps=tuple(payload["control_steps"]),
            info_structure=str(payload.get("info_structure", DECISION_HAZARD)),
            expectation=str(payload.get("expectation", EXACT)),
            monte_carlo_size=int(payload.get("monte_carlo_size", 1000)),
            seed=None if seed is None else int(seed),
            n_workers=int(payload.get("n_workers", 1)),
            show_progress=bool(payload.get("show_progress", False)),
            progress_desc=str(payload.get("progress_desc", "Backward Induction")),
        )


def grid_size(low: float, high: float, step: float) -> int:
    """Number of points in ``low, low + step, ...`` not exceeding ``high``."""
    return int(math.floor((high - low) / step + GRID_TOL)) + 1


def state_grid_sizes(model: StochDynProgModel, params: SDPParameters) -> tuple[int, ...]:
    """Grid size per state dimension."""
    return tuple(
        grid_size(low, high, step)
        for (low, high), step in zip(model.state_bounds, params.state_steps)
    )


def save_sdp_parameters(params: SDPParameters, output_path: Path) -> None:
    """Serialize parameters to YAML."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(yaml.safe_dump(params.to_dict(), sort_keys=False))


def load_sdp_parameters(path: Path) -> SDPParameters:
    """Load parameters from YAML."""
    payload = yaml.safe_load(path.read_text())
    if not isinstance(payload, dict):
        raise ValueError("Expected a mapping in SDP parameter YAML.")
    return SDPParameters.from_dict(payload)


def _as_float_tuple(values: Any) -> tuple[float, ...]:
    if isinstance(values, (int, float)):
        return (float(values),)
    return tuple(float(value) for value in values)
