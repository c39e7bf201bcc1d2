import pytest

from confluence_trader.config import ExitConfig
from confluence_trader.exit_strategy import PARTIAL_SELL, TRAILING_STOP, ExitManager
from confluence_trader.portfolio import Holding


def _holding(quantity=100, avg_price=10_000.0, highest=0.0, partial_sells=None, initial=0):
    return Holding(
        code="AAA",
        quantity=quantity,
        avg_price=avg_price,
        buy_date="2024-03-01T09:00:00",
        initial_quantity=initial,
        highest_price=highest,
        partial_sells=list(partial_sells or []),
    )


@pytest.fixture
def exits():
    return ExitManager(ExitConfig())


class TestLadder:
    def test_first_rung(self, exits):
        decision = exits.check(_holding(), 10_600)
        assert decision.action == PARTIAL_SELL
        assert decision.level_id == "L5"
        assert decision.quantity == 30
        assert decision.priority == 2

    def test_completed_rung_never_retriggers(self, exits):
        holding = _holding(quantity=70, initial=100, partial_sells=["L5"])
        assert exits.next_partial_sell(holding, 10_600) is None
        plan = exits.next_partial_sell(holding, 11_000)
        assert plan.level_id == "L10"
        assert plan.quantity == 30

    def test_skipped_rungs_execute_lowest_first(self, exits):
        assert exits.next_partial_sell(_holding(), 12_000).level_id == "L5"

    def test_quantity_floor_and_minimum(self, exits):
        assert exits.next_partial_sell(_holding(quantity=7), 10_600).quantity == 2
        assert exits.next_partial_sell(_holding(quantity=2), 10_600).quantity == 1

    def test_quantity_is_capped_at_held_shares(self, exits):
        holding = _holding(quantity=20, initial=100, partial_sells=["L5", "L10"])
        assert exits.next_partial_sell(holding, 11_600).quantity == 20

    def test_level_ids(self):
        assert [lv.level_id for lv in ExitConfig().levels] == ["L5", "L10", "L15"]


class TestTrailingStop:
    def test_stop_never_below_profit_floor(self, exits):
        assert exits.effective_stop_price(10_000, 10_100) == 10_200
        assert exits.effective_stop_price(10_000, 11_000) == 10_670

    def test_stop_is_monotonic_in_high_water(self, exits):
        stops = [exits.effective_stop_price(10_000, high) for high in range(10_000, 13_000, 50)]
        assert stops == sorted(stops)

    def test_inactive_below_activation(self, exits):
        state = exits.trailing_stop(_holding(highest=10_400), 10_100)
        assert not state.active
        assert not state.triggered

    def test_triggers_after_pullback(self, exits):
        holding = _holding(highest=11_000, partial_sells=["L5", "L10"])
        state = exits.trailing_stop(holding, 10_650)
        assert state.active
        assert state.triggered
        assert state.stop_price == 10_670

    def test_trailing_beats_due_rung(self, exits):
        holding = _holding(highest=11_000)
        decision = exits.check(holding, 10_650)
        assert decision.action == TRAILING_STOP
        assert decision.quantity == 100
        assert decision.priority == 1


def test_disabled_engine_does_nothing():
    exits = ExitManager(ExitConfig(enabled=False))
    assert exits.check(_holding(highest=11_000), 10_650) is None


def test_no_action_in_the_flat_zone(exits):
    assert exits.check(_holding(), 10_200) is None
