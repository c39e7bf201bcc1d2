import pytest

from confluence_trader.broker import BUY, SELL, BrokerError, GuardedBroker, validate_order
from confluence_trader.circuit_breaker import BreakerState, CircuitBreaker, CircuitOpenError

from conftest import make_candles


class TestValidateOrder:
    def test_accepts_well_formed_orders(self):
        validate_order("005930", 10)
        validate_order("AAA", 1, price=1500.0)

    @pytest.mark.parametrize(
        "code,quantity,price",
        [
            ("", 1, None),
            ("AA-1", 1, None),
            ("AAA", 0, None),
            ("AAA", -3, None),
            ("AAA", 1.5, None),
            ("AAA", True, None),
            ("AAA", 100_001, None),
            ("AAA", 1, -1.0),
            ("AAA", 1, float("nan")),
        ],
    )
    def test_rejects_malformed_orders(self, code, quantity, price):
        with pytest.raises(ValueError):
            validate_order(code, quantity, price)


class TestInMemoryBroker:
    def test_market_buy_fills_at_quote(self, broker):
        broker.set_quote("AAA", 10_000)
        result = broker.place_order("AAA", BUY, 5)
        assert result.success
        assert broker.orders[result.order_ref]["price"] == 10_000
        assert broker.positions["AAA"].quantity == 5
        assert broker.cash == 10_000_000 - 50_000

    def test_balance_reflects_marked_positions(self, broker):
        broker.set_quote("AAA", 10_000)
        broker.place_order("AAA", BUY, 10)
        broker.set_quote("AAA", 11_000)

        balance = broker.get_balance()
        assert balance.total_deposit == 10_000_000
        assert balance.total_profit == 10_000
        assert balance.holdings[0].current_price == 11_000

    def test_sell_reduces_and_closes_positions(self, broker):
        broker.set_quote("AAA", 10_000)
        broker.place_order("AAA", BUY, 10)
        broker.place_order("AAA", SELL, 4)
        assert broker.positions["AAA"].quantity == 6
        broker.place_order("AAA", SELL, 6)
        assert "AAA" not in broker.positions
        assert not broker.place_order("AAA", SELL, 1).success

    def test_rejections_and_failures(self, broker):
        broker.set_quote("AAA", 10_000)
        broker.rejections["AAA"] = "market closed"
        result = broker.place_order("AAA", BUY, 1)
        assert not result.success
        assert result.message == "market closed"

        broker.fail_next("quote")
        with pytest.raises(BrokerError):
            broker.get_quote("AAA")
        assert broker.get_quote("AAA").price == 10_000

    def test_candles_are_windowed(self, broker):
        broker.set_candles("AAA", make_candles([100 + i for i in range(30)]))
        candles = broker.get_candles("AAA", 10)
        assert len(candles) == 10
        assert candles[-1].close == 129


class TestGuardedBroker:
    def _guarded(self, broker, monotonic, pacer=None):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=30, clock=monotonic)
        return GuardedBroker(broker, breaker, pacer), breaker

    def test_repeated_failures_open_the_endpoint(self, broker, monotonic):
        broker.set_quote("AAA", 10_000)
        guarded, breaker = self._guarded(broker, monotonic)
        broker.fail_next("quote", 2)

        for _ in range(2):
            with pytest.raises(BrokerError):
                guarded.get_quote("AAA")
        assert breaker.get_state("quote") == BreakerState.OPEN

        calls = len(broker.calls)
        with pytest.raises(CircuitOpenError):
            guarded.get_quote("AAA")
        assert len(broker.calls) == calls

        # other endpoints keep working
        assert guarded.get_balance().cash == 10_000_000

    def test_recovers_after_cooldown(self, broker, monotonic):
        broker.set_quote("AAA", 10_000)
        guarded, breaker = self._guarded(broker, monotonic)
        broker.fail_next("quote", 2)
        for _ in range(2):
            with pytest.raises(BrokerError):
                guarded.get_quote("AAA")

        monotonic.advance(30)
        assert guarded.get_quote("AAA").price == 10_000
        assert breaker.get_state("quote") == BreakerState.CLOSED

    def test_invalid_order_never_reaches_the_broker(self, broker, monotonic):
        guarded, _ = self._guarded(broker, monotonic)
        with pytest.raises(ValueError):
            guarded.place_order("AAA", BUY, 0)
        with pytest.raises(ValueError):
            guarded.place_order("AAA", "HOLD", 1)
        assert broker.calls == []

    def test_calls_are_paced(self, broker, monotonic, fake_pacer):
        broker.set_quote("AAA", 10_000)
        guarded, _ = self._guarded(broker, monotonic, pacer=fake_pacer)
        start = monotonic()
        guarded.get_quote("AAA")
        guarded.get_quote("AAA")
        guarded.get_quote("AAA")
        assert monotonic() - start == pytest.approx(0.4)
