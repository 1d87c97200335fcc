"""
Circuit breaker guarding calls to the slow, unreliable AI collaborator.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from closure.observability.telemetry import counter, log_event


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        if self._state == "open":
            if self.clock() - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._failures = 0
                return True
            counter("circuit_open_rate")
            log_event("circuit.open", stage=self.stage)
            return False
        return True

    def record_success(self) -> None:
        """Close the breaker after a successful call.

        Side Effects:
            Resets the failure count.
        """
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        """Count a failure and open the breaker once fail_max is reached.

        Side Effects:
            May flip state to "open" and log the transition.
        """
        self._failures += 1
        if self._state == "half_open" or self._failures >= self.fail_max:
            self._state = "open"
            self._opened_at = self.clock()
            counter("circuit_open_rate")
            log_event("circuit.opened", stage=self.stage, failures=self._failures)
