from dataclasses import replace

import pytest

from confluence_trader.broker import BalanceHolding
from confluence_trader.config import MtfConfig
from confluence_trader.journal import BUY, PARTIAL_SELL, SELL
from confluence_trader.market import MarketContext
from confluence_trader.portfolio import Holding
from confluence_trader.runner import build, run_once

from conftest import make_candles

FALLING = [20_000 - 100 * i for i in range(60)]


@pytest.fixture
def daily_config(config):
    """Daily-only analysis; the weekly timeframe is covered in test_mtf."""
    return replace(config, mtf=MtfConfig(enabled=False))


@pytest.fixture
def app(daily_config, broker, wall_clock, fake_pacer):
    return build(daily_config, broker, clock=wall_clock, pacer=fake_pacer)


def _indices(broker):
    for code in ("0001", "1001"):
        broker.set_quote(code, 2_500, change_rate=1.0)
        broker.set_candles(code, make_candles([2000 + 5 * i + 0.1 * i ** 2 for i in range(60)]))


def _flat(broker, code, price):
    broker.set_quote(code, price)
    broker.set_candles(code, make_candles([price] * 60))


def _hold(app, broker, code, quantity=10, avg_price=10_000.0, highest=0.0, buy_date="2024-03-01T09:00:00"):
    portfolio = app.portfolio_store.load()
    portfolio.add(
        Holding(
            code=code,
            quantity=quantity,
            avg_price=avg_price,
            buy_date=buy_date,
            highest_price=highest,
        )
    )
    app.portfolio_store.save(portfolio)
    broker.positions[code] = BalanceHolding(code=code, quantity=quantity, avg_price=avg_price)


class TestCycle:
    def test_buys_oversold_and_stops_out_loser(self, app, broker):
        _indices(broker)
        broker.set_quote("AAA", FALLING[-1])
        broker.set_candles("AAA", make_candles(FALLING))
        _flat(broker, "BBB", 10_000)
        _flat(broker, "CCC", 9_400)
        _hold(app, broker, "CCC")

        result = run_once(app)

        assert result.errors == []
        assert result.analyzed == 3
        assert result.market_condition == "STRONG_BULLISH"
        assert [(t.type, t.code) for t in result.trades] == [(SELL, "CCC"), (BUY, "AAA")]
        assert result.sells[0].reason.startswith("stop-loss")
        assert result.buys[0].quantity == 35

        portfolio = app.portfolio_store.load()
        assert portfolio.codes == ["AAA"]
        assert portfolio.summary.cash == broker.cash

        (snapshot,) = app.daily_returns.snapshots()
        assert snapshot.date == "2024-03-04"
        assert snapshot.buys == 1
        assert snapshot.sells == 1
        assert snapshot.holdings_count == 1
        assert snapshot.market_condition == "STRONG_BULLISH"
        assert result.finished_at == "2024-03-04T10:00:00"

    def test_instrument_failure_does_not_stop_the_cycle(self, app, broker):
        _indices(broker)
        broker.set_quote("AAA", FALLING[-1])
        broker.set_candles("AAA", make_candles(FALLING))
        _flat(broker, "CCC", 10_000)

        result = app.orchestrator.run_cycle()

        assert [(e.code, e.stage) for e in result.errors] == [("BBB", "fetch")]
        assert [t.code for t in result.buys] == ["AAA"]

    def test_hostile_market_suspends_buys(self, app, broker, monkeypatch):
        monkeypatch.setattr(app.orchestrator.market, "analyze_market", lambda: MarketContext(condition="STRONG_BEARISH"))
        broker.set_quote("AAA", FALLING[-1])
        broker.set_candles("AAA", make_candles(FALLING))
        _flat(broker, "BBB", 10_000)
        _flat(broker, "CCC", 10_000)

        result = app.orchestrator.run_cycle()
        assert result.market_condition == "STRONG_BEARISH"
        assert result.trades == []
        assert app.daily_returns.snapshots()[0].market_condition == "STRONG_BEARISH"

    def test_cycle_never_raises(self, app, monkeypatch):
        def broken():
            raise OSError("disk gone")

        monkeypatch.setattr(app.portfolio_store, "load", broken)
        result = app.orchestrator.run_cycle()
        assert [(e.code, e.stage) for e in result.errors] == [("*", "cycle")]
        assert "disk gone" in result.errors[0].error
        assert result.finished_at is not None

    def test_balance_failure_is_recorded(self, app, broker):
        _indices(broker)
        for code in ("AAA", "BBB", "CCC"):
            _flat(broker, code, 10_000)
        broker.fail_next("balance")

        result = app.orchestrator.run_cycle()
        assert [(e.code, e.stage) for e in result.errors] == [("*", "balance")]
        assert app.daily_returns.snapshots() == []


class TestExits:
    def test_trailing_stop_closes_position(self, app, broker):
        _indices(broker)
        _flat(broker, "AAA", 10_000)
        _flat(broker, "BBB", 10_650)
        _flat(broker, "CCC", 10_000)
        _hold(app, broker, "BBB", highest=11_000)

        result = app.orchestrator.run_cycle()
        (trade,) = result.trades
        assert trade.type == SELL
        assert trade.reason.startswith("trailing stop")
        assert "BBB" in app.cooldowns.entries()

    def test_trailing_stop_ignores_the_minimum_gain(self, app, broker):
        _indices(broker)
        _flat(broker, "AAA", 10_000)
        _flat(broker, "BBB", 10_050)
        _flat(broker, "CCC", 10_000)
        _hold(app, broker, "BBB", highest=11_000)

        result = app.orchestrator.run_cycle()
        (trade,) = result.trades
        assert trade.type == SELL
        assert trade.reason.startswith("trailing stop")
        assert trade.profit == 500
        assert "BBB" not in app.portfolio_store.load()

    def test_rejected_trailing_stop_falls_back_to_stop_loss(self, app, broker):
        _indices(broker)
        _flat(broker, "AAA", 10_000)
        _flat(broker, "BBB", 9_400)
        _flat(broker, "CCC", 10_000)
        _hold(app, broker, "BBB", highest=11_000, buy_date="2024-03-04T09:00:00")

        result = app.orchestrator.run_cycle()
        assert [s.reason for s in result.skipped if s.code == "BBB"] == ["held 1.0h, minimum 2h"]
        (trade,) = result.trades
        assert trade.type == SELL
        assert trade.code == "BBB"
        assert trade.reason.startswith("stop-loss")
        assert trade.profit_rate == -0.06
        assert "BBB" not in app.portfolio_store.load()

    def test_ladder_rung_and_high_water(self, app, broker):
        _indices(broker)
        _flat(broker, "AAA", 10_000)
        _flat(broker, "BBB", 10_600)
        _flat(broker, "CCC", 10_000)
        _hold(app, broker, "BBB")

        result = app.orchestrator.run_cycle()
        (trade,) = result.trades
        assert trade.type == PARTIAL_SELL
        assert trade.level_id == "L5"
        assert trade.quantity == 3

        holding = app.portfolio_store.load().get("BBB")
        assert holding.quantity == 7
        assert holding.partial_sells == ["L5"]
        assert holding.highest_price == 10_600

        again = app.orchestrator.run_cycle()
        assert again.trades == []


def test_sync_portfolio_keeps_local_history(app, broker, wall_clock):
    portfolio = app.portfolio_store.load()
    portfolio.add(
        Holding(code="AAA", quantity=10, avg_price=10_000, buy_date="2024-03-01T09:00:00", partial_sells=["L5"])
    )
    portfolio.add(Holding(code="ZZZ", quantity=5, avg_price=2_000, buy_date="2024-03-01T09:00:00"))
    app.portfolio_store.save(portfolio)
    broker.positions["AAA"] = BalanceHolding(code="AAA", quantity=20, avg_price=10_100)
    broker.positions["BBB"] = BalanceHolding(code="BBB", quantity=3, avg_price=5_000)
    app.cooldowns.record("BBB", wall_clock())
    app.cooldowns.record("CCC", wall_clock())

    synced = app.orchestrator.sync_portfolio()

    assert sorted(synced.codes) == ["AAA", "BBB"]
    aaa = synced.get("AAA")
    assert aaa.quantity == 20
    assert aaa.avg_price == 10_100
    assert aaa.initial_quantity == 20
    assert aaa.buy_date == "2024-03-01T09:00:00"
    assert aaa.partial_sells == ["L5"]
    assert aaa.highest_price == 10_100
    assert synced.get("BBB").buy_date == wall_clock().isoformat(timespec="seconds")
    assert sorted(app.portfolio_store.load().codes) == ["AAA", "BBB"]
    assert list(app.cooldowns.entries()) == ["CCC"]


def test_sell_all_liquidates_fresh_positions(app, broker, wall_clock):
    for code in ("AAA", "BBB"):
        broker.set_quote(code, 9_990)
    portfolio = app.portfolio_store.load()
    for code in ("AAA", "BBB"):
        portfolio.add(Holding(code=code, quantity=10, avg_price=10_000, buy_date=wall_clock().isoformat()))
        broker.positions[code] = BalanceHolding(code=code, quantity=10, avg_price=10_000)
    app.portfolio_store.save(portfolio)

    result = app.orchestrator.sell_all(reason="shutdown")
    assert sorted(t.code for t in result.sells) == ["AAA", "BBB"]
    assert all(t.reason == "shutdown" for t in result.trades)
    assert len(app.portfolio_store.load()) == 0
    assert broker.positions == {}
