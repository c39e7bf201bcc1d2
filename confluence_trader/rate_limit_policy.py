"""Broker call pacing: sliding-window quota per endpoint plus a global minimum gap.

Broker calls are sequential; ``CallPacer.acquire`` blocks until the next call
is permitted and then records it. Clock and sleep are injectable so tests
can run without real delays.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


@dataclass
class RateLimitQuota:
    """Per-endpoint quota."""
    requests_per_window: int
    window_seconds: float


@dataclass
class RateLimitState:
    """Request history for one endpoint."""
    quota: RateLimitQuota
    request_times: List[float] = field(default_factory=list)

    def prune(self, now: float) -> None:
        cutoff = now - self.quota.window_seconds
        self.request_times = [t for t in self.request_times if t > cutoff]

    def wait_time(self, now: float) -> float:
        """Seconds until this endpoint has capacity. 0 if it has capacity now."""
        self.prune(now)
        if len(self.request_times) < self.quota.requests_per_window:
            return 0.0
        oldest = min(self.request_times)
        return max(0.0, oldest + self.quota.window_seconds - now)


class CallPacer:
    """Ticket scheduler wrapping every broker call."""

    def __init__(
        self,
        min_interval_seconds: float = 0.2,
        default_quota: Optional[RateLimitQuota] = None,
        quotas: Optional[Dict[str, RateLimitQuota]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self.default_quota = default_quota or RateLimitQuota(requests_per_window=5, window_seconds=1)
        self.quotas = dict(quotas or {})
        self.clock = clock
        self.sleep = sleep
        self.states: Dict[str, RateLimitState] = {}
        self._last_call: Optional[float] = None

    @classmethod
    def from_config(cls, config, **kwargs) -> "CallPacer":
        return cls(
            min_interval_seconds=config.min_interval_seconds,
            default_quota=RateLimitQuota(requests_per_window=config.requests_per_second, window_seconds=1),
            **kwargs,
        )

    def _get_state(self, endpoint: str) -> RateLimitState:
        if endpoint not in self.states:
            self.states[endpoint] = RateLimitState(quota=self.quotas.get(endpoint, self.default_quota))
        return self.states[endpoint]

    def time_until_allowed(self, endpoint: str) -> float:
        now = self.clock()
        gap = 0.0
        if self._last_call is not None:
            gap = max(0.0, self._last_call + self.min_interval_seconds - now)
        return max(gap, self._get_state(endpoint).wait_time(now))

    def acquire(self, endpoint: str) -> float:
        """Block until a call to ``endpoint`` is allowed, record it, and return the time waited."""
        waited = 0.0
        delay = self.time_until_allowed(endpoint)
        while delay > 0:
            self.sleep(delay)
            waited += delay
            delay = self.time_until_allowed(endpoint)
        now = self.clock()
        self._get_state(endpoint).request_times.append(now)
        self._last_call = now
        return waited
