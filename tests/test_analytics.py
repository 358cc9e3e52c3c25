"""
Performance analytics tests

Validates the statistics derived from order logs, empty-history behaviour
and purity of the computations.
"""

import math

import numpy as np
import pandas as pd
import pytest

from paper_engine.analytics import (
    analyze,
    calculate_max_drawdown,
    equity_snapshots,
    expectancy,
    generate_report,
    kelly_fraction,
    profit_factor,
    sharpe_ratio,
    value_at_risk,
    win_rate
)
from paper_engine.analytics.performance import average_holding_days, consecutive_streaks
from paper_engine.core.ledger import AccountLedger

from conftest import FixedClock


@pytest.fixture
def mixed_ledger():
    """One winning and one losing closing trade"""
    ledger = AccountLedger("alice", initial_capital=10000.0, clock=FixedClock())
    ledger.apply_buy("AAPL", 10, 100.0)
    ledger.apply_sell("AAPL", 5, 110.0)  # +50 - 0.55
    ledger.apply_sell("AAPL", 5, 90.0)   # -50 - 0.45
    return ledger


def test_empty_history_returns_zeros():
    metrics = analyze([], 100000.0)
    assert metrics.total_orders == 0
    assert metrics.win_rate == 0.0
    assert metrics.expectancy == 0.0
    assert math.isinf(metrics.profit_factor)
    assert metrics.kelly_fraction == 0.0
    assert metrics.sharpe_ratio == 0.0
    assert metrics.max_drawdown == 0.0
    assert metrics.value_at_risk_95 == 0.0
    assert metrics.average_holding_days == 0.0


def test_single_buy_history():
    ledger = AccountLedger("bob", clock=FixedClock())
    ledger.apply_buy("AAPL", 1, 100.0)
    metrics = analyze(ledger.orders, ledger.initial_capital)
    assert metrics.closing_trades == 0
    assert metrics.win_rate == 0.0
    assert metrics.total_commissions == pytest.approx(0.1)


def test_trade_statistics(mixed_ledger):
    metrics = analyze(mixed_ledger.orders, mixed_ledger.initial_capital)
    win, loss = 49.45, -50.45

    assert metrics.closing_trades == 2
    assert metrics.winning_trades == 1
    assert metrics.losing_trades == 1
    assert metrics.win_rate == 0.5
    assert metrics.average_win == pytest.approx(win)
    assert metrics.average_loss == pytest.approx(loss)
    assert metrics.largest_win == pytest.approx(win)
    assert metrics.largest_loss == pytest.approx(loss)
    assert metrics.profit_factor == pytest.approx(win / abs(loss))
    assert metrics.expectancy == pytest.approx(0.5 * win - 0.5 * abs(loss))
    assert metrics.kelly_fraction == pytest.approx(0.5 - 0.5 / (win / abs(loss)))
    assert metrics.total_realized_pl == pytest.approx(win + loss)


def test_profit_factor_without_losses():
    assert math.isinf(profit_factor([10.0, 5.0]))
    assert math.isinf(profit_factor([]))
    assert math.isinf(profit_factor([0.0, 0.0]))
    assert profit_factor([10.0, -5.0]) == pytest.approx(2.0)


def test_edge_metrics_on_plain_lists():
    pls = [100.0, -50.0, 100.0, -50.0]
    assert win_rate(pls) == 0.5
    assert expectancy(pls) == pytest.approx(25.0)
    assert kelly_fraction(pls) == pytest.approx(0.5 - 0.5 / 2.0)
    assert kelly_fraction([10.0]) == 0.0
    assert kelly_fraction([-10.0]) == pytest.approx(-1.0)


def test_max_drawdown():
    values = np.array([100.0, 120.0, 90.0, 130.0, 117.0])
    assert calculate_max_drawdown(values) == pytest.approx(0.25)
    assert calculate_max_drawdown(np.array([100.0, 110.0, 120.0])) == 0.0


def test_sharpe_ratio():
    assert sharpe_ratio(np.array([100.0])) == 0.0
    assert sharpe_ratio(np.array([100.0, 100.0, 100.0])) == 0.0

    values = np.array([100.0, 110.0, 99.0, 108.9])
    returns = np.diff(values) / values[:-1]
    assert sharpe_ratio(values) == pytest.approx(np.mean(returns) / np.std(returns))


def test_equity_snapshots_follow_transactions(mixed_ledger):
    values = equity_snapshots(mixed_ledger.orders, mixed_ledger.initial_capital)
    assert len(values) == 4
    assert values[0] == 10000.0
    assert values[1] == pytest.approx(10000.0 - 1.0)
    assert values[2] == pytest.approx(10000.0 - 1.0 + 49.45)
    assert values[3] == pytest.approx(10000.0 - 1.0 + 49.45 - 50.45)


def test_value_at_risk():
    pls = [-100.0, 50.0, 20.0, -10.0]
    # Sorted returns [-0.1, -0.01, 0.02, 0.05]; index floor(4 * 0.05) = 0
    assert value_at_risk(pls, 1000.0, 2000.0, 0.95) == pytest.approx(-200.0)
    assert value_at_risk(pls, 1000.0, 2000.0, 0.5) == pytest.approx(0.02 * 2000.0)
    assert value_at_risk([], 1000.0, 2000.0) == 0.0


def test_consecutive_streaks():
    streaks = consecutive_streaks([1.0, 2.0, -1.0, -1.0, -1.0, 3.0])
    assert streaks == {'max_consecutive_wins': 2, 'max_consecutive_losses': 3}


def test_average_holding_days():
    clock = FixedClock()
    ledger = AccountLedger("carol", clock=clock)
    start = clock()
    ledger.apply_buy("AAPL", 10, 100.0, timestamp=start)
    ledger.apply_sell("AAPL", 5, 100.0, timestamp=start + pd.Timedelta(days=2))
    ledger.apply_sell("AAPL", 5, 100.0, timestamp=start + pd.Timedelta(days=4))
    assert average_holding_days(ledger.orders) == pytest.approx(3.0)


def test_analytics_are_idempotent(mixed_ledger):
    orders_before = list(mixed_ledger.orders)
    first = analyze(mixed_ledger.orders, mixed_ledger.initial_capital, 10500.0)
    second = analyze(mixed_ledger.orders, mixed_ledger.initial_capital, 10500.0)
    assert first == second
    assert mixed_ledger.orders == orders_before


def test_report(mixed_ledger):
    report = generate_report(analyze(mixed_ledger.orders, mixed_ledger.initial_capital))
    assert "PERFORMANCE REPORT" in report
    assert "Win Rate" in report
    assert "50.0%" in report
