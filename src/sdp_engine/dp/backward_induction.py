"""Backward induction over a discretized state space.

Value functions are computed from the terminal stage down to stage 0. For a
grid point ``x`` at stage ``t`` every discretized control ``u`` is combined
with every noise sample ``w`` of the stage; a transition counts only when
``constraints(t, x, u, w)`` holds and the next state stays inside the state
grid, whose last point sits below the upper bound when a step does not
divide the range. The two information structures then differ in where the
minimum is taken:

* decision-hazard (``"DH"``): ``min_u E_w[cost + V_{t+1}]``, the control is
  fixed before the noise is seen;
* hazard-decision (``"HD"``): ``E_w[min_u (cost + V_{t+1})]``, the control
  reacts to the realized noise.

Expectations are renormalized by the probability mass of the retained
samples. A grid point where nothing is retained raises
:class:`~sdp_engine.core.errors.InfeasibleStateError`.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging

import numpy as np

from sdp_engine.core.errors import InfeasibleStateError
from sdp_engine.core.model import LinearSPModel, StochDynProgModel, as_dp_model
from sdp_engine.core.noise import NoiseLaw, sample_many
from sdp_engine.core.params import SDPParameters
from sdp_engine.dp.discretization import Grid, control_grid, state_grid
from sdp_engine.dp.value_functions import StageInterpolant, ValueFunctions

logger = logging.getLogger(__name__)

# Work items per worker thread in one stage sweep.
_CHUNKS_PER_WORKER = 4


@dataclass(frozen=True)
class _StageContext:
    """Read-only inputs shared by every grid point of one stage."""

    model: StochDynProgModel
    params: SDPParameters
    t: int
    grid: Grid
    controls: np.ndarray
    law: NoiseLaw
    interpolant: StageInterpolant


def expectation_samples(
    law: NoiseLaw,
    params: SDPParameters,
    rng: np.random.Generator | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(samples, probas)`` used to compute one expectation.

    In exact mode these are the outcomes of ``law`` with their weights. In
    Monte Carlo mode ``params.monte_carlo_size`` draws weighted uniformly.
    """
    if not params.is_monte_carlo:
        return law.support, law.proba
    if rng is None:
        raise ValueError("Monte Carlo expectation requires a random generator.")
    samples = sample_many(law, params.monte_carlo_size, rng)
    probas = np.full(params.monte_carlo_size, 1.0 / params.monte_carlo_size)
    return samples, probas


def transition_values(
    model: StochDynProgModel,
    grid: Grid,
    interpolant: StageInterpolant,
    t: int,
    x: np.ndarray,
    controls: np.ndarray,
    samples: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Evaluate ``cost + V_{t+1}(next_state)`` for every (control, sample).

    Returns:
        ``(admissible, values)``, both of shape ``(n_controls, n_samples)``.
        ``values`` is only meaningful where ``admissible`` is true.
    """
    n_controls = controls.shape[0]
    n_samples = samples.shape[1]
    admissible = np.zeros((n_controls, n_samples), dtype=bool)
    values = np.zeros((n_controls, n_samples), dtype=np.float64)

    costs: list[float] = []
    next_indices: list[np.ndarray] = []
    slots: list[tuple[int, int]] = []
    for j in range(n_controls):
        u = controls[j]
        for k in range(n_samples):
            w = samples[:, k]
            if not model.constraints(t, x, u, w):
                continue
            next_state = as_state(model.dynamics(t, x, u, w))
            if not grid.contains(next_state):
                continue
            admissible[j, k] = True
            costs.append(as_scalar(model.cost(t, x, u, w)))
            next_indices.append(grid.snapped_index_of(next_state))
            slots.append((j, k))

    if slots:
        future = interpolant.evaluate(np.vstack(next_indices))
        rows = [slot[0] for slot in slots]
        cols = [slot[1] for slot in slots]
        values[rows, cols] = np.asarray(costs, dtype=np.float64) + future
    return admissible, values


def bellman_backup_dh(
    admissible: np.ndarray,
    values: np.ndarray,
    probas: np.ndarray,
) -> tuple[float, int] | None:
    """Minimum over controls of the renormalized expectation.

    Controls whose retained probability mass is zero are skipped. Ties go to
    the first control in enumeration order.

    Returns:
        ``(value, control_index)`` or ``None`` when no control is admissible.
    """
    mass = admissible.astype(np.float64) @ probas
    usable = mass > 0.0
    if not np.any(usable):
        return None
    weighted = np.where(admissible, values, 0.0) @ probas
    expectations = np.full(mass.shape, np.inf)
    expectations[usable] = weighted[usable] / mass[usable]
    best = int(np.argmin(expectations))
    return float(expectations[best]), best


def hd_outcome_backup(
    admissible: np.ndarray,
    values: np.ndarray,
) -> tuple[float, int] | None:
    """Best ``(value, control_index)`` for one observed noise outcome.

    ``admissible`` and ``values`` are the columns of one sample. Returns
    ``None`` when no control is admissible for that outcome.
    """
    if not np.any(admissible):
        return None
    masked = np.where(admissible, values, np.inf)
    best = int(np.argmin(masked))
    return float(masked[best]), best


def bellman_backup_hd(
    admissible: np.ndarray,
    values: np.ndarray,
    probas: np.ndarray,
) -> float | None:
    """Expectation over outcomes of the per-outcome minimum.

    Outcomes without any admissible control are dropped and the remaining
    mass renormalized.

    Returns:
        The value, or ``None`` when no outcome has an admissible control.
    """
    usable = np.any(admissible, axis=0)
    mass = float(probas[usable].sum())
    if mass <= 0.0:
        return None
    per_outcome = np.where(admissible, values, np.inf).min(axis=0)
    return float(per_outcome[usable] @ probas[usable]) / mass


def compute_value_functions(
    model: StochDynProgModel,
    params: SDPParameters,
) -> ValueFunctions:
    """Compute the value functions of every stage by backward induction.

    Args:
        model: Problem to solve.
        params: Discretization and algorithm settings.

    Returns:
        Read-only value functions with ``model.stage_number`` stages; the last
        stage holds the final cost.

    Raises:
        ValueError: If ``params`` is malformed or inconsistent with ``model``.
        InfeasibleStateError: If a grid point has no admissible control.
    """
    params.validate_for(model)

    grid = state_grid(model, params)
    controls = control_grid(model, params).points()
    n_stages = model.stage_number
    value_functions = ValueFunctions.empty(grid, n_stages)
    points = grid.points()

    logger.info(
        "Solving %d stages on a state grid of shape %s with %d controls (%s, %s).",
        n_stages,
        grid.shape,
        controls.shape[0],
        params.info_structure,
        params.expectation,
    )

    terminal = np.fromiter(
        (as_scalar(model.final_cost(x)) for x in points),
        dtype=np.float64,
        count=points.shape[0],
    )
    value_functions.values[..., n_stages - 1] = terminal.reshape(grid.shape)

    seed_sequence = np.random.SeedSequence(params.seed) if params.is_monte_carlo else None
    chunks = _split_work(points.shape[0], params.n_workers)

    iterator = range(n_stages - 2, -1, -1)
    progress = iterator
    if params.show_progress:
        # Import tqdm lazily to avoid notebook-side effects when progress is disabled.
        from tqdm.auto import tqdm

        progress = tqdm(
            iterator,
            desc=params.progress_desc,
            total=n_stages - 1,
            dynamic_ncols=True,
            leave=False,
        )

    executor = ThreadPoolExecutor(max_workers=params.n_workers) if params.n_workers > 1 else None
    try:
        for t in progress:
            context = _StageContext(
                model=model,
                params=params,
                t=t,
                grid=grid,
                controls=controls,
                law=model.noises[t],
                interpolant=value_functions.interpolant(t + 1),
            )
            seeds = seed_sequence.spawn(points.shape[0]) if seed_sequence is not None else None
            stage_values = np.empty(points.shape[0], dtype=np.float64)

            def run_chunk(chunk: np.ndarray) -> None:
                for idx in chunk:
                    rng = np.random.default_rng(seeds[idx]) if seeds is not None else None
                    stage_values[idx] = _value_at_point(context, points[idx], rng)

            if executor is None:
                for chunk in chunks:
                    run_chunk(chunk)
            else:
                # Consuming the iterator waits for every chunk and re-raises worker errors.
                list(executor.map(run_chunk, chunks))

            value_functions.values[..., t] = stage_values.reshape(grid.shape)
            logger.debug(
                "Stage %d done: min=%.6g max=%.6g", t, stage_values.min(), stage_values.max()
            )
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
        if params.show_progress:
            progress.close()

    logger.info("Value functions computed for %d stages.", n_stages)
    return value_functions.freeze()


def solve_dp(
    model: StochDynProgModel | LinearSPModel,
    params: SDPParameters,
) -> ValueFunctions:
    """Convert ``model`` to its dynamic-programming form and solve it."""
    return compute_value_functions(as_dp_model(model), params)


def as_scalar(value: object) -> float:
    """Convert a user callable's scalar result (possibly a size-1 array)."""
    return float(np.asarray(value, dtype=np.float64).item())


def as_state(value: object) -> np.ndarray:
    """Convert a user dynamics result to a flat float vector."""
    return np.asarray(value, dtype=np.float64).reshape(-1)


def _value_at_point(
    context: _StageContext,
    x: np.ndarray,
    rng: np.random.Generator | None,
) -> float:
    samples, probas = expectation_samples(context.law, context.params, rng)
    admissible, values = transition_values(
        model=context.model,
        grid=context.grid,
        interpolant=context.interpolant,
        t=context.t,
        x=x,
        controls=context.controls,
        samples=samples,
    )
    if context.params.is_decision_hazard:
        backup = bellman_backup_dh(admissible, values, probas)
        value = None if backup is None else backup[0]
    else:
        value = bellman_backup_hd(admissible, values, probas)
    if value is None:
        raise InfeasibleStateError(
            context.t,
            x,
            "Every (control, noise) pair violates the constraints or leaves the state bounds.",
        )
    return value


def _split_work(n_items: int, n_workers: int) -> list[np.ndarray]:
    if n_workers <= 1:
        return [np.arange(n_items)]
    n_chunks = min(n_items, n_workers * _CHUNKS_PER_WORKER)
    return [chunk for chunk in np.array_split(np.arange(n_items), n_chunks) if chunk.size]
