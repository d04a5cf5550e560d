"""Stochastic dynamic programming on discretized state spaces."""

from sdp_engine.dp.backward_induction import compute_value_functions, solve_dp
from sdp_engine.dp.policy import get_bellman_value, get_control
from sdp_engine.dp.simulation import forward_simulation, forward_single_simulation
from sdp_engine.dp.value_functions import ValueFunctions

__all__ = [
    "ValueFunctions",
    "compute_value_functions",
    "forward_simulation",
    "forward_single_simulation",
    "get_bellman_value",
    "get_control",
    "solve_dp",
]
