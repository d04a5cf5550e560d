"""Error types raised by the SDP solver."""

from __future__ import annotations

from typing import Sequence


class InfeasibleStateError(RuntimeError):
    """Raised when no control is admissible at a (stage, state) pair.

    Attributes:
        stage: Stage index at which the Bellman minimization was empty.
        state: Continuous state coordinates of the offending point.
    """

    def __init__(self, stage: int, state: Sequence[float], detail: str = "") -> None:
        self.stage = int(stage)
        self.state = tuple(float(value) for value in state)
        message = f"No admissible control at stage {self.stage} for state {self.state}."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class OffGridQueryError(ValueError):
    """Raised when a value function is queried outside its grid."""
