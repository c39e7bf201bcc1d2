"""Per-endpoint circuit breaker for broker calls.

State machine per key::

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(cooldown elapsed)--> HALF_OPEN (at most half_open_max trial calls)
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN

Callers must check ``can_request`` before every call and report ``success`` or
``failure`` afterwards. A timeout counts as a failure.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

from .logging_setup import logger


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised when a call is short-circuited by an open breaker."""

    def __init__(self, key: str):
        super().__init__(f"circuit open for '{key}'")
        self.key = key


@dataclass
class _KeyState:
    fails: int = 0
    open_until: float = 0.0
    half_open_trials: int = 0


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        half_open_max: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if half_open_max < 1:
            raise ValueError("half_open_max must be >= 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.half_open_max = half_open_max
        self.clock = clock
        self._states: Dict[str, _KeyState] = {}

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
            half_open_max=config.half_open_max,
            clock=clock,
        )

    def _get(self, key: str) -> _KeyState:
        if key not in self._states:
            self._states[key] = _KeyState()
        return self._states[key]

    def can_request(self, key: str) -> bool:
        """Return True if a call may proceed. Consumes a trial slot when half-open."""
        s = self._get(key)
        if s.fails < self.failure_threshold:
            return True
        if s.open_until > self.clock():
            return False
        if s.half_open_trials >= self.half_open_max:
            return False
        s.half_open_trials += 1
        return True

    def success(self, key: str) -> None:
        s = self._get(key)
        if s.fails >= self.failure_threshold:
            logger.info(f"Circuit closed | key={key}")
        s.fails = 0
        s.open_until = 0.0
        s.half_open_trials = 0

    def failure(self, key: str) -> None:
        s = self._get(key)
        s.fails += 1
        if s.fails >= self.failure_threshold:
            s.open_until = self.clock() + self.cooldown_seconds
            s.half_open_trials = 0
            logger.error(
                f"Circuit opened | key={key} consecutive_failures={s.fails} cooldown={self.cooldown_seconds}s"
            )

    def get_state(self, key: str) -> BreakerState:
        s = self._get(key)
        if s.fails < self.failure_threshold:
            return BreakerState.CLOSED
        if s.open_until > self.clock():
            return BreakerState.OPEN
        return BreakerState.HALF_OPEN

    def reset(self, key: str = None) -> None:
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)
