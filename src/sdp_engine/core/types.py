"""Result types shared by the policy and simulation modules."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True, eq=False)
class Trajectory:
    """Outcome of one forward simulation.

    Attributes:
        total_cost: Realized stage costs plus the final cost.
        states: ``(TF, dim_states)`` visited states, ``states[0]`` is the start.
        controls: ``(TF - 1, dim_controls)`` applied controls.
    """

    total_cost: float
    states: np.ndarray
    controls: np.ndarray


@dataclass(frozen=True, eq=False)
class SimulationResult:
    """Outcome of a batch of forward simulations.

    Attributes:
        costs: ``(n,)`` realized total cost per scenario.
        states: ``(TF, n, dim_states)`` state trajectories.
        controls: ``(TF - 1, n, dim_controls)`` control trajectories.
    """

    costs: np.ndarray
    states: np.ndarray
    controls: np.ndarray

    @property
    def n_scenarios(self) -> int:
        return int(self.costs.shape[0])

    @property
    def mean_cost(self) -> float:
        return float(np.mean(self.costs))

    def trajectory(self, k: int) -> Trajectory:
        """Return scenario ``k`` as a :class:`Trajectory`."""
        return Trajectory(
            total_cost=float(self.costs[k]),
            states=self.states[:, k, :].copy(),
            controls=self.controls[:, k, :].copy(),
        )

    def to_frame(self) -> pd.DataFrame:
        """Flatten trajectories into one row per (scenario, stage).

        The control columns of the terminal stage are NaN.
        """
        n_stages, n_scenarios, dim_states = self.states.shape
        dim_controls = self.controls.shape[2]
        rows: list[dict[str, object]] = []
        for k in range(n_scenarios):
            for t in range(n_stages):
                row: dict[str, object] = {"scenario": k, "stage": t}
                for i in range(dim_states):
                    row[f"x{i}"] = float(self.states[t, k, i])
                for j in range(dim_controls):
                    row[f"u{j}"] = (
                        float(self.controls[t, k, j]) if t < n_stages - 1 else np.nan
                    )
                row["total_cost"] = float(self.costs[k])
                rows.append(row)
        return pd.DataFrame(rows)
