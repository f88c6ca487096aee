"""
Convergence gate

Counts consecutive good rounds and decides when a node is synchronized:

    ACCUMULATING -> CONVERGED   after `required_consecutive` good rounds in a row
    ACCUMULATING -> EXHAUSTED   after `max_rounds` rounds without converging
    ACCUMULATING -> CANCELLED   on cancel()

Any bad round resets the streak to zero.
"""

from enum import Enum

from .models import ConvergenceState


class GatePhase(Enum):
    ACCUMULATING = "accumulating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class ConvergenceGate:
    def __init__(self, required_consecutive: int = 3, max_rounds: int = 120):
        if required_consecutive < 1 or max_rounds < 1:
            raise ValueError("required_consecutive and max_rounds must be at least 1")
        self.required_consecutive = required_consecutive
        self.max_rounds = max_rounds
        self.consecutive_good = 0
        self.rounds_elapsed = 0
        self.phase = GatePhase.ACCUMULATING

    @property
    def done(self) -> bool:
        return self.phase is not GatePhase.ACCUMULATING

    @property
    def state(self) -> ConvergenceState:
        return ConvergenceState(
            consecutive_good=self.consecutive_good,
            required_consecutive=self.required_consecutive,
            rounds_elapsed=self.rounds_elapsed,
            max_rounds=self.max_rounds,
        )

    def record(self, good: bool) -> GatePhase:
        """Apply one round's result and return the new phase"""
        if self.done:
            raise RuntimeError(f"convergence gate already {self.phase.value}")

        self.rounds_elapsed += 1
        if good:
            self.consecutive_good += 1
        else:
            self.consecutive_good = 0

        # convergence wins when it lands on the last allowed round
        if self.consecutive_good >= self.required_consecutive:
            self.phase = GatePhase.CONVERGED
        elif self.rounds_elapsed >= self.max_rounds:
            self.phase = GatePhase.EXHAUSTED
        return self.phase

    def cancel(self) -> GatePhase:
        if not self.done:
            self.phase = GatePhase.CANCELLED
        return self.phase
