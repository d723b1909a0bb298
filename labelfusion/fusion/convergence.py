"""
Convergence monitoring, cancellation and iteration notifications for the EM loop.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional


@dataclass(frozen=True)
class IterationEvent:
    """Notification sent after every completed EM iteration."""

    iteration: int
    max_update: float


IterationCallback = Callable[[IterationEvent], None]


class CancellationToken:
    """
    Thread-safe abort request.

    The EM loop checks the token after each completed iteration and, when it
    is set, stops as if it had converged.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request the loop to stop at the next iteration boundary."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ConvergenceMonitor:
    """
    Tracks the largest confusion matrix update per iteration.

    The loop ends when the update drops below ``threshold`` or when
    ``max_iterations`` iterations have run. Without a cap only the threshold
    ends the loop.
    """

    threshold: float
    max_iterations: Optional[int] = None
    iterations: int = 0
    max_update: float = float("inf")
    history: List[float] = field(default_factory=list)
    reason: str = ""

    def update(self, max_update: float) -> None:
        """Record the result of one completed iteration."""
        self.iterations += 1
        self.max_update = max_update
        self.history.append(max_update)

    @property
    def converged(self) -> bool:
        return self.max_update < self.threshold

    @property
    def reached_cap(self) -> bool:
        return self.max_iterations is not None and self.iterations >= self.max_iterations

    def should_stop(self, token: Optional[CancellationToken] = None) -> bool:
        """
        Decide whether the loop terminates after the current iteration.

        Sets ``reason`` to "converged", "max_iterations" or "cancelled".
        """
        if self.converged:
            self.reason = "converged"
        elif self.reached_cap:
            self.reason = "max_iterations"
        elif token is not None and token.cancelled:
            self.reason = "cancelled"
        else:
            return False
        return True
