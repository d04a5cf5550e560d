"""Single-product stock management problem.

At each stage an order ``u`` is placed, then a random demand ``w`` is
served from the stock. Unserved demand is lost and penalized, leftover stock
beyond the capacity is discarded:

    x_next = min(max(x + u - w, 0), capacity)
    cost   = price_t * u + holding * x_next + shortage * max(w - x - u, 0)

Remaining stock is valued at ``salvage`` per unit at the horizon.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from sdp_engine.core.model import StochDynProgModel
from sdp_engine.core.noise import NoiseLaw


@dataclass(frozen=True)
class StockModelConfig:
    """Economic and horizon settings of the stock problem."""

    stage_number: int = 6
    capacity: float = 10.0
    max_order: float = 4.0
    initial_stock: float = 5.0
    demand_support: tuple[float, ...] = (1.0, 2.0, 4.0)
    demand_proba: tuple[float, ...] = (0.3, 0.5, 0.2)
    order_prices: tuple[float, ...] = field(default=(1.0, 1.4, 0.8, 1.2, 1.0))
    holding: float = 0.1
    shortage: float = 3.0
    salvage: float = 0.5

    def validate(self) -> None:
        if self.stage_number < 2:
            raise ValueError("stage_number must be at least 2.")
        if len(self.order_prices) != self.stage_number - 1:
            raise ValueError(
                f"order_prices needs {self.stage_number - 1} entries, "
                f"got {len(self.order_prices)}."
            )
        if self.capacity <= 0.0 or self.max_order <= 0.0:
            raise ValueError("capacity and max_order must be positive.")
        if not (0.0 <= self.initial_stock <= self.capacity):
            raise ValueError("initial_stock must lie in [0, capacity].")


def build_stock_model(config: StockModelConfig | None = None) -> StochDynProgModel:
    """Build the stock management model described in the module docstring."""
    config = config or StockModelConfig()
    config.validate()
    demand = NoiseLaw.from_arrays(config.demand_support, config.demand_proba)
    prices = np.asarray(config.order_prices, dtype=np.float64)

    def dynamics(t: int, x: np.ndarray, u: np.ndarray, w: np.ndarray) -> np.ndarray:
        return np.clip(x + u - w, 0.0, config.capacity)

    def cost(t: int, x: np.ndarray, u: np.ndarray, w: np.ndarray) -> float:
        next_stock = min(max(x[0] + u[0] - w[0], 0.0), config.capacity)
        lost = max(w[0] - x[0] - u[0], 0.0)
        return prices[t] * u[0] + config.holding * next_stock + config.shortage * lost

    def final_cost(x: np.ndarray) -> float:
        return -config.salvage * x[0]

    return StochDynProgModel(
        state_bounds=((0.0, config.capacity),),
        control_bounds=((0.0, config.max_order),),
        stage_number=config.stage_number,
        noises=tuple(demand for _ in range(config.stage_number - 1)),
        dynamics=dynamics,
        cost=cost,
        final_cost=final_cost,
        initial_state=(config.initial_stock,),
    )
