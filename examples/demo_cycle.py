"""End-to-end demo of one decision cycle.

Shows:
1. Building a configuration in code
2. Wiring the pipeline around the in-memory broker
3. Seeding quotes and candles (an oversold name, a flat name, a losing holding)
4. Running one cycle and reading the result
5. Journal P&L summary and the daily return snapshot
"""
import sys
import tempfile
from datetime import date, timedelta
from pathlib import Path

# Add parent directory to path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent))

from confluence_trader.broker import BalanceHolding, InMemoryBroker
from confluence_trader.candles import Candle
from confluence_trader.config import TradingConfig
from confluence_trader.logging_setup import logger, setup_logging
from confluence_trader.portfolio import Holding
from confluence_trader.runner import build, run_once


def candles_from_closes(closes, start=date(2024, 1, 1)):
    out = []
    prev = closes[0]
    for i, close in enumerate(closes):
        out.append(
            Candle(
                date=(start + timedelta(days=i)).isoformat(),
                open=prev,
                high=max(prev, close) * 1.005,
                low=min(prev, close) * 0.995,
                close=close,
                volume=100_000,
            )
        )
        prev = close
    return out


def main():
    workdir = Path(tempfile.mkdtemp(prefix="confluence-demo-"))

    # Step 1: Logging and configuration
    setup_logging(log_file=str(workdir / "logs" / "trading.log"), level="INFO", enable_console=True)
    logger.info("=== Confluence Trader Demo ===")
    config = TradingConfig.from_dict(
        {
            "trading": {"buy_amount": 1_000_000, "max_holdings": 5},
            "mtf": {"enabled": False},
            "persistence": {"data_dir": str(workdir / "data")},
            "watch_list": ["005930", "000660", "035420"],
            "sector_map": {"005930": "SEMI", "000660": "SEMI", "035420": "INTERNET"},
        }
    )

    # Step 2: Broker double with market data
    broker = InMemoryBroker(cash=20_000_000)
    for index in config.index_codes:
        broker.set_quote(index, 2_600, change_rate=0.8)
        broker.set_candles(index, candles_from_closes([2_400 + 4 * i for i in range(60)]))

    falling = [80_000 - 400 * i for i in range(60)]
    broker.set_quote("005930", falling[-1], change_rate=-0.5, name="Samsung Electronics")
    broker.set_candles("005930", candles_from_closes(falling))

    broker.set_quote("000660", 150_000, name="SK hynix")
    broker.set_candles("000660", candles_from_closes([150_000] * 60))

    broker.set_quote("035420", 188_000, change_rate=-1.2, name="NAVER")
    broker.set_candles("035420", candles_from_closes([188_000] * 60))

    # Step 3: Pipeline, with one losing position already held
    components = build(config, broker)
    portfolio = components.portfolio_store.load()
    portfolio.add(Holding(code="035420", name="NAVER", quantity=5, avg_price=200_000, buy_date="2024-02-20T09:30:00"))
    components.portfolio_store.save(portfolio)
    broker.positions["035420"] = BalanceHolding(code="035420", quantity=5, avg_price=200_000)

    # Step 4: One cycle
    result = run_once(components)
    logger.info(f"Cycle result | {result.summary()}")
    for trade in result.trades:
        logger.info(f"  {trade.type} {trade.code} qty={trade.quantity} @ {trade.price:g} | {trade.reason}")
    for skip in result.skipped:
        logger.info(f"  skipped {skip.action} {skip.code}: {skip.reason}")

    # Step 5: Reporting
    summary = components.journal.summary()
    logger.info(
        f"Realized P&L | trades={summary['total_trades']} pnl={summary['total_realized_pnl']} "
        f"win_rate={summary['win_rate_percent']}%"
    )
    for snapshot in components.daily_returns.snapshots():
        logger.info(
            f"Daily return | date={snapshot.date} evaluation={snapshot.total_evaluation:,.0f} "
            f"profit_rate={snapshot.profit_rate:+.2%} holdings={snapshot.holdings_count}"
        )
    logger.info(f"State written to {workdir}")
    logger.info("=== Demo Complete ===")


if __name__ == "__main__":
    main()
