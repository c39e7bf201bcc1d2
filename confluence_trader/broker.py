"""
Broker collaborator interface and guarded access.

The broker wire client (authentication, HTTP, order routing) lives outside
this package. It is consumed through the narrow ``BrokerClient`` interface:

- ``get_quote(code)``
- ``get_candles(code, window, granularity)``
- ``place_order(code, side, quantity, price)``, where ``price=None`` means market
- ``get_balance()``

``GuardedBroker`` wraps any client so that every call is paced and passes
through the per-endpoint circuit breaker. ``InMemoryBroker`` is a deterministic
double used by tests and the demo.
"""

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .candles import Candle, normalize
from .circuit_breaker import CircuitBreaker, CircuitOpenError
from .logging_setup import logger, sanitize_error
from .rate_limit_policy import CallPacer

INSTRUMENT_CODE = re.compile(r"^[0-9A-Za-z]{1,12}$")
MAX_ORDER_QUANTITY = 100_000

BUY = "BUY"
SELL = "SELL"


class BrokerError(Exception):
    """A broker call failed (transport error, rejected request, bad payload)."""

    def __init__(self, message: str, status: Optional[int] = None, method: str = None, url: str = None):
        super().__init__(message)
        self.status = status
        self.method = method
        self.url = url


@dataclass(frozen=True)
class Quote:
    code: str
    price: float
    change_rate: float = 0.0  # percent change versus previous close
    volume: float = 0.0
    name: str = ""


@dataclass(frozen=True)
class OrderResult:
    success: bool
    order_ref: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class BalanceHolding:
    code: str
    quantity: int
    avg_price: float
    current_price: float = 0.0
    name: str = ""


@dataclass(frozen=True)
class Balance:
    holdings: List[BalanceHolding] = field(default_factory=list)
    cash: float = 0.0
    total_deposit: float = 0.0
    total_evaluation: float = 0.0
    total_profit: float = 0.0


def validate_order(code: str, quantity: int, price: Optional[float] = None) -> None:
    """Reject malformed orders before they reach the broker.

    Raises:
        ValueError: bad instrument code, non-positive or oversized quantity,
            or a negative/non-finite limit price
    """
    if not isinstance(code, str) or not INSTRUMENT_CODE.match(code.strip()):
        raise ValueError(f"invalid instrument code: {code!r}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"quantity must be a positive integer, got {quantity!r}")
    if quantity > MAX_ORDER_QUANTITY:
        raise ValueError(f"quantity too large: {quantity}")
    if price is not None and (not math.isfinite(price) or price < 0):
        raise ValueError(f"price must be a non-negative number, got {price!r}")


class BrokerClient(ABC):
    """Abstract broker collaborator."""

    @abstractmethod
    def get_quote(self, code: str) -> Quote:
        """Return the latest quote for an instrument or index."""

    @abstractmethod
    def get_candles(self, code: str, window: int, granularity: str = "D") -> List[Candle]:
        """Return up to ``window`` candles, oldest first.

        Args:
            code: Instrument or index code
            window: Number of bars requested
            granularity: "D" for daily, "W" for weekly
        """

    @abstractmethod
    def place_order(self, code: str, side: str, quantity: int, price: Optional[float] = None) -> OrderResult:
        """Submit an order. ``price=None`` submits a market order."""

    @abstractmethod
    def get_balance(self) -> Balance:
        """Return the authoritative account balance."""


class InMemoryBroker(BrokerClient):
    """Deterministic broker double: market orders fill at the current quote."""

    def __init__(self, cash: float = 10_000_000.0):
        self.cash = cash
        self.deposit = cash
        self.quotes: Dict[str, Quote] = {}
        self.candles: Dict[Tuple[str, str], List[Candle]] = {}
        self.positions: Dict[str, BalanceHolding] = {}
        self.orders: Dict[str, dict] = {}
        self.failures: Dict[str, int] = {}
        self.rejections: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.next_id = 1

    def _gen_id(self) -> str:
        oid = f"m{self.next_id}"
        self.next_id += 1
        return oid

    def _maybe_fail(self, endpoint: str) -> None:
        remaining = self.failures.get(endpoint, 0)
        if remaining > 0:
            self.failures[endpoint] = remaining - 1
            raise BrokerError(f"simulated {endpoint} failure", status=503)

    def set_quote(self, code: str, price: float, change_rate: float = 0.0, volume: float = 0.0, name: str = "") -> None:
        self.quotes[code] = Quote(code=code, price=price, change_rate=change_rate, volume=volume, name=name)

    def set_candles(self, code: str, candles, granularity: str = "D") -> None:
        self.candles[(code, granularity)] = normalize(candles)

    def fail_next(self, endpoint: str, times: int = 1) -> None:
        self.failures[endpoint] = self.failures.get(endpoint, 0) + times

    def get_quote(self, code: str) -> Quote:
        self.calls.append(("quote", code))
        self._maybe_fail("quote")
        if code not in self.quotes:
            raise BrokerError(f"no quote for {code}", status=404)
        return self.quotes[code]

    def get_candles(self, code: str, window: int, granularity: str = "D") -> List[Candle]:
        self.calls.append(("candles", code))
        self._maybe_fail("candles")
        return list(self.candles.get((code, granularity), []))[-window:]

    def place_order(self, code: str, side: str, quantity: int, price: Optional[float] = None) -> OrderResult:
        self.calls.append(("order", code))
        self._maybe_fail("order")
        if code in self.rejections:
            return OrderResult(success=False, message=self.rejections[code])
        fill = price if price is not None else self.quotes[code].price
        oid = self._gen_id()
        self.orders[oid] = {"code": code, "side": side, "quantity": quantity, "price": fill, "state": "filled"}
        held = self.positions.get(code)
        if side == BUY:
            total_qty = quantity + (held.quantity if held else 0)
            cost = fill * quantity + (held.avg_price * held.quantity if held else 0)
            self.positions[code] = BalanceHolding(code=code, quantity=total_qty, avg_price=cost / total_qty, current_price=fill)
            self.cash -= fill * quantity
        else:
            if held is None or held.quantity < quantity:
                return OrderResult(success=False, message="insufficient holdings")
            remaining = held.quantity - quantity
            if remaining:
                self.positions[code] = BalanceHolding(code=code, quantity=remaining, avg_price=held.avg_price, current_price=fill)
            else:
                del self.positions[code]
            self.cash += fill * quantity
        return OrderResult(success=True, order_ref=oid)

    def get_balance(self) -> Balance:
        self.calls.append(("balance", ""))
        self._maybe_fail("balance")
        holdings = []
        evaluation = 0.0
        for code, pos in self.positions.items():
            current = self.quotes[code].price if code in self.quotes else pos.avg_price
            holdings.append(BalanceHolding(code=code, quantity=pos.quantity, avg_price=pos.avg_price, current_price=current))
            evaluation += current * pos.quantity
        total = self.cash + evaluation
        return Balance(
            holdings=holdings,
            cash=self.cash,
            total_deposit=self.deposit,
            total_evaluation=total,
            total_profit=total - self.deposit,
        )


class GuardedBroker(BrokerClient):
    """Wrap a client with per-endpoint circuit breaking and call pacing."""

    def __init__(self, inner: BrokerClient, breaker: CircuitBreaker, pacer: Optional[CallPacer] = None):
        self.inner = inner
        self.breaker = breaker
        self.pacer = pacer

    def _call(self, endpoint: str, fn: Callable, *args):
        if not self.breaker.can_request(endpoint):
            raise CircuitOpenError(endpoint)
        if self.pacer is not None:
            self.pacer.acquire(endpoint)
        try:
            result = fn(*args)
        except Exception as e:
            self.breaker.failure(endpoint)
            logger.warning(f"Broker call failed | endpoint={endpoint} error={sanitize_error(e)}")
            raise
        self.breaker.success(endpoint)
        return result

    def get_quote(self, code: str) -> Quote:
        return self._call("quote", self.inner.get_quote, code)

    def get_candles(self, code: str, window: int, granularity: str = "D") -> List[Candle]:
        return normalize(self._call("candles", self.inner.get_candles, code, window, granularity))

    def place_order(self, code: str, side: str, quantity: int, price: Optional[float] = None) -> OrderResult:
        validate_order(code, quantity, price)
        if side not in (BUY, SELL):
            raise ValueError(f"side must be BUY or SELL, got {side!r}")
        return self._call("order", self.inner.place_order, code, side, quantity, price)

    def get_balance(self) -> Balance:
        return self._call("balance", self.inner.get_balance)
