"""Problem definitions consumed by the dynamic-programming solver."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Callable, Sequence

import numpy as np

from sdp_engine.core.noise import NoiseLaw

Bounds = tuple[tuple[float, float], ...]
StageFunction = Callable[[int, np.ndarray, np.ndarray, np.ndarray], object]
FinalCostFunction = Callable[[np.ndarray], float]

_BOUND_TOL = 1e-9


def always_feasible(t: int, x: np.ndarray, u: np.ndarray, w: np.ndarray) -> bool:
    """Constraint function accepting every transition."""
    return True


def zero_final_cost(x: np.ndarray) -> float:
    """Final cost function returning zero everywhere."""
    return 0.0


@dataclass(frozen=True, eq=False)
class StochDynProgModel:
    """Stochastic control problem in the form used by backward induction.

    Stages are indexed ``0 .. stage_number - 1``. ``noises[t]`` is the law of
    the noise driving the transition from stage ``t`` to ``t + 1``, so there
    are ``stage_number - 1`` of them.

    Attributes:
        state_bounds: ``(low, high)`` per state dimension.
        control_bounds: ``(low, high)`` per control dimension.
        stage_number: Number of stages ``TF`` including the terminal one.
        noises: Per-stage noise laws.
        dynamics: ``dynamics(t, x, u, w) -> x_next``.
        cost: ``cost(t, x, u, w) -> float`` instantaneous cost.
        final_cost: ``final_cost(x) -> float`` terminal cost.
        constraints: ``constraints(t, x, u, w) -> bool``.
        initial_state: Starting state used for the Bellman value and
            forward simulation.
    """

    state_bounds: Bounds
    control_bounds: Bounds
    stage_number: int
    noises: tuple[NoiseLaw, ...]
    dynamics: StageFunction
    cost: StageFunction
    final_cost: FinalCostFunction = zero_final_cost
    constraints: StageFunction = always_feasible
    initial_state: tuple[float, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "state_bounds", _normalize_bounds(self.state_bounds, "state"))
        object.__setattr__(
            self, "control_bounds", _normalize_bounds(self.control_bounds, "control")
        )
        object.__setattr__(self, "noises", tuple(self.noises))
        object.__setattr__(
            self, "initial_state", tuple(float(value) for value in self.initial_state)
        )
        self.validate()

    @property
    def dim_states(self) -> int:
        return len(self.state_bounds)

    @property
    def dim_controls(self) -> int:
        return len(self.control_bounds)

    @property
    def dim_noises(self) -> int:
        return self.noises[0].dim

    def validate(self) -> None:
        if self.stage_number < 2:
            raise ValueError("stage_number must be at least 2.")
        if len(self.noises) != self.stage_number - 1:
            raise ValueError(
                f"Expected {self.stage_number - 1} noise laws for "
                f"stage_number={self.stage_number}, got {len(self.noises)}."
            )
        for law in self.noises:
            if not isinstance(law, NoiseLaw):
                raise ValueError(f"noises must contain NoiseLaw objects, got {type(law)!r}.")
        if len({law.dim for law in self.noises}) != 1:
            raise ValueError("All noise laws must share the same dimension.")
        for name in ("dynamics", "cost", "final_cost", "constraints"):
            if not callable(getattr(self, name)):
                raise ValueError(f"{name} must be callable.")
        if self.initial_state:
            if len(self.initial_state) != self.dim_states:
                raise ValueError(
                    f"initial_state has {len(self.initial_state)} coordinates, "
                    f"expected {self.dim_states}."
                )
            for value, (low, high) in zip(self.initial_state, self.state_bounds):
                if not (low - _BOUND_TOL <= value <= high + _BOUND_TOL):
                    raise ValueError(
                        f"initial_state {self.initial_state} lies outside the state bounds."
                    )


@dataclass(frozen=True, eq=False)
class LinearSPModel:
    """Model variant without state/control constraints.

    Mirrors the linear-cost models authored for cut-based solvers; the final
    cost is optional. Convert with :func:`dp_model_from_linear`.
    """

    state_bounds: Bounds
    control_bounds: Bounds
    stage_number: int
    noises: tuple[NoiseLaw, ...]
    dynamics: StageFunction
    cost: StageFunction
    initial_state: tuple[float, ...]
    final_cost: FinalCostFunction | None = None


def dp_model_from_linear(model: LinearSPModel) -> StochDynProgModel:
    """Convert a :class:`LinearSPModel` into a :class:`StochDynProgModel`."""
    return StochDynProgModel(
        state_bounds=model.state_bounds,
        control_bounds=model.control_bounds,
        stage_number=model.stage_number,
        noises=model.noises,
        dynamics=model.dynamics,
        cost=model.cost,
        final_cost=model.final_cost if model.final_cost is not None else zero_final_cost,
        constraints=always_feasible,
        initial_state=model.initial_state,
    )


def as_dp_model(model: StochDynProgModel | LinearSPModel) -> StochDynProgModel:
    """Return the dynamic-programming form of a supported model variant."""
    if isinstance(model, StochDynProgModel):
        return model
    if isinstance(model, LinearSPModel):
        return dp_model_from_linear(model)
    raise TypeError(
        f"Cannot build a StochDynProgModel from {type(model).__name__}; "
        "supported variants are StochDynProgModel and LinearSPModel."
    )


class ModelBuilder:
    """Incrementally assemble a :class:`StochDynProgModel`.

    Example::

        model = (
            ModelBuilder()
            .add_state(0.0, 10.0)
            .add_control(0.0, 1.0)
            .set_stage_number(3)
            .set_noises([deterministic_law(0.0)] * 2)
            .set_dynamics(lambda t, x, u, w: x - u)
            .set_cost(lambda t, x, u, w: float(u[0]))
            .set_initial_state([5.0])
            .build()
        )
    """

    def __init__(self) -> None:
        self._state_bounds: list[tuple[float, float]] = []
        self._control_bounds: list[tuple[float, float]] = []
        self._stage_number: int | None = None
        self._noises: list[NoiseLaw] = []
        self._dynamics: StageFunction | None = None
        self._cost: StageFunction | None = None
        self._final_cost: FinalCostFunction = zero_final_cost
        self._constraints: StageFunction = always_feasible
        self._initial_state: tuple[float, ...] = ()

    def add_state(self, low: float, high: float) -> "ModelBuilder":
        self._state_bounds.append((float(low), float(high)))
        return self

    def add_control(self, low: float, high: float) -> "ModelBuilder":
        self._control_bounds.append((float(low), float(high)))
        return self

    def set_stage_number(self, stage_number: int) -> "ModelBuilder":
        self._stage_number = int(stage_number)
        return self

    def set_noises(self, noises: Sequence[NoiseLaw]) -> "ModelBuilder":
        self._noises = list(noises)
        return self

    def set_dynamics(self, dynamics: StageFunction) -> "ModelBuilder":
        self._dynamics = dynamics
        return self

    def set_cost(self, cost: StageFunction) -> "ModelBuilder":
        self._cost = cost
        return self

    def set_final_cost(self, final_cost: FinalCostFunction) -> "ModelBuilder":
        self._final_cost = final_cost
        return self

    def set_constraints(self, constraints: StageFunction) -> "ModelBuilder":
        self._constraints = constraints
        return self

    def set_initial_state(self, initial_state: Sequence[float]) -> "ModelBuilder":
        self._initial_state = tuple(float(value) for value in initial_state)
        return self

    def build(self) -> StochDynProgModel:
        missing = [
            name
            for name, value in (
                ("state bounds", self._state_bounds),
                ("control bounds", self._control_bounds),
                ("noises", self._noises),
            )
            if not value
        ]
        missing += [
            name
            for name, value in (
                ("stage number", self._stage_number),
                ("dynamics", self._dynamics),
                ("cost", self._cost),
            )
            if value is None
        ]
        if missing:
            raise ValueError(f"Model is incomplete; missing: {', '.join(missing)}.")
        return StochDynProgModel(
            state_bounds=tuple(self._state_bounds),
            control_bounds=tuple(self._control_bounds),
            stage_number=self._stage_number,
            noises=tuple(self._noises),
            dynamics=self._dynamics,
            cost=self._cost,
            final_cost=self._final_cost,
            constraints=self._constraints,
            initial_state=self._initial_state,
        )


def _normalize_bounds(bounds: Sequence[Sequence[float]], name: str) -> Bounds:
    if len(bounds) == 0:
        raise ValueError(f"At least one {name} dimension is required.")
    normalized: list[tuple[float, float]] = []
    for pair in bounds:
        if len(pair) != 2:
            raise ValueError(f"Each {name} bound must be a (low, high) pair, got {pair!r}.")
        low, high = float(pair[0]), float(pair[1])
        if not (math.isfinite(low) and math.isfinite(high)):
            raise ValueError(f"{name} bounds must be finite, got ({low}, {high}).")
        if not low < high:
            raise ValueError(f"{name} bound requires low < high, got ({low}, {high}).")
        normalized.append((low, high))
    return tuple(normalized)
