"""
Performance Analytics

This module derives trading statistics from an account's order log:
- Trade statistics (win rate, average win/loss, largest win/loss, streaks)
- Edge metrics (profit factor, expectancy, Kelly fraction)
- Portfolio metrics over per-transaction value snapshots (Sharpe ratio,
  maximum drawdown)
- Historical Value-at-Risk of per-trade returns
- Average holding period and a formatted text report

Everything here is a pure function of its inputs. Metrics are recomputed on
demand and an empty history yields zeros instead of errors.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from numba import njit

from ..models import Order, OrderSide

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    """Performance summary of an order history"""

    # Activity
    total_orders: int
    closing_trades: int
    winning_trades: int
    losing_trades: int

    # Trade statistics
    win_rate: float
    average_win: float
    average_loss: float  # negative or zero
    largest_win: float
    largest_loss: float
    total_realized_pl: float
    total_commissions: float

    # Edge
    profit_factor: float  # inf when there are no losing trades
    expectancy: float
    kelly_fraction: float

    # Portfolio
    total_return: float
    sharpe_ratio: float
    max_drawdown: float
    value_at_risk_95: float

    # Streaks and timing
    max_consecutive_wins: int
    max_consecutive_losses: int
    average_holding_days: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def closing_pls(orders: Sequence[Order]) -> List[float]:
    """Realized PL of every sell, in log order"""
    return [o.realized_pl for o in orders if o.side == OrderSide.SELL and o.realized_pl is not None]


def win_rate(pls: Sequence[float]) -> float:
    if len(pls) == 0:
        return 0.0
    return sum(1 for pl in pls if pl > 0) / len(pls)


def average_win(pls: Sequence[float]) -> float:
    wins = [pl for pl in pls if pl > 0]
    return float(np.mean(wins)) if wins else 0.0


def average_loss(pls: Sequence[float]) -> float:
    losses = [pl for pl in pls if pl < 0]
    return float(np.mean(losses)) if losses else 0.0


def profit_factor(pls: Sequence[float]) -> float:
    """Gross profit over gross loss; inf whenever there are no losing trades"""
    gross_profit = sum(pl for pl in pls if pl > 0)
    gross_loss = abs(sum(pl for pl in pls if pl < 0))
    if gross_loss == 0:
        return float('inf')
    return gross_profit / gross_loss


def expectancy(pls: Sequence[float]) -> float:
    rate = win_rate(pls)
    return rate * average_win(pls) - (1 - rate) * abs(average_loss(pls))


def kelly_fraction(pls: Sequence[float]) -> float:
    """
    Kelly criterion ``W - (1 - W) / R`` with R the win/loss ratio

    Not clamped; a negative value means the history has no edge. Returns 0
    without losing trades and ``-(1 - W)`` without winning trades.
    """
    rate = win_rate(pls)
    avg_win = average_win(pls)
    avg_loss = abs(average_loss(pls))
    if avg_loss == 0:
        return 0.0
    if avg_win == 0:
        return -(1 - rate)
    return rate - (1 - rate) / (avg_win / avg_loss)


def equity_snapshots(orders: Sequence[Order], initial_capital: float) -> np.ndarray:
    """
    Portfolio value after each transaction, starting with initial capital

    Positions are carried at cost, so each snapshot is initial capital minus
    buy commissions plus realized PL accumulated so far.
    """
    values = [initial_capital]
    value = initial_capital
    for order in orders:
        if order.side == OrderSide.BUY:
            value -= order.commission
        elif order.realized_pl is not None:
            value += order.realized_pl
        values.append(value)
    return np.array(values, dtype=float)


def sharpe_ratio(values: np.ndarray) -> float:
    """Mean over standard deviation of period returns (not annualized)"""
    if len(values) < 2:
        return 0.0
    returns = np.diff(values) / values[:-1]
    std = np.std(returns)
    if std == 0 or not np.isfinite(std):
        return 0.0
    return float(np.mean(returns) / std)


@njit
def calculate_max_drawdown(values: np.ndarray) -> float:
    """
    Largest peak-to-trough decline as a fraction of the peak

    Args:
        values: Ordered portfolio values

    Returns:
        Maximum drawdown (0.25 for a 25% decline)
    """
    if len(values) == 0:
        return 0.0
    peak = values[0]
    max_dd = 0.0
    for value in values:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak
            if dd > max_dd:
                max_dd = dd
    return max_dd


def value_at_risk(pls: Sequence[float], initial_capital: float, current_capital: float,
                  confidence: float = 0.95) -> float:
    """
    Historical VaR of per-trade returns

    Per-trade returns are realized PL over initial capital; the value at the
    ``1 - confidence`` position of the sorted distribution is scaled by the
    current capital. Losses come out negative.
    """
    if len(pls) == 0 or initial_capital <= 0:
        return 0.0
    returns = np.sort(np.asarray(pls, dtype=float) / initial_capital)
    index = int(np.floor(len(returns) * (1 - confidence)))
    index = min(max(index, 0), len(returns) - 1)
    return float(returns[index] * current_capital)


def consecutive_streaks(pls: Sequence[float]) -> Dict[str, int]:
    """Longest runs of winning and losing trades"""
    max_wins = max_losses = 0
    wins = losses = 0
    for pl in pls:
        if pl > 0:
            wins += 1
            losses = 0
        elif pl < 0:
            losses += 1
            wins = 0
        else:
            wins = losses = 0
        max_wins = max(max_wins, wins)
        max_losses = max(max_losses, losses)
    return {'max_consecutive_wins': max_wins, 'max_consecutive_losses': max_losses}


def average_holding_days(orders: Sequence[Order]) -> float:
    """Mean days between each sell and the last preceding buy of the same symbol"""
    sells = [o for o in orders if o.side == OrderSide.SELL]
    if not sells:
        return 0.0

    total_days = 0.0
    last_buy = {}
    for order in orders:
        if order.side == OrderSide.BUY:
            last_buy[order.symbol] = order.timestamp
        elif order.symbol in last_buy:
            total_days += (order.timestamp - last_buy[order.symbol]).total_seconds() / 86400.0
    return total_days / len(sells)


def analyze(orders: Sequence[Order], initial_capital: float,
            current_capital: Optional[float] = None) -> PerformanceMetrics:
    """
    Compute the full performance summary of an order log

    Args:
        orders: Order log in execution order
        initial_capital: Account starting capital
        current_capital: Current account value used to scale VaR and total
            return (defaults to the last value snapshot)

    Returns:
        PerformanceMetrics
    """
    orders = list(orders)
    pls = closing_pls(orders)
    values = equity_snapshots(orders, initial_capital)
    if current_capital is None:
        current_capital = float(values[-1])

    logger.debug(f"Analyzing {len(orders)} orders ({len(pls)} closing trades)")
    streaks = consecutive_streaks(pls)
    total_return = (current_capital - initial_capital) / initial_capital if initial_capital > 0 else 0.0

    return PerformanceMetrics(
        total_orders=len(orders),
        closing_trades=len(pls),
        winning_trades=sum(1 for pl in pls if pl > 0),
        losing_trades=sum(1 for pl in pls if pl < 0),
        win_rate=win_rate(pls),
        average_win=average_win(pls),
        average_loss=average_loss(pls),
        largest_win=max([pl for pl in pls if pl > 0], default=0.0),
        largest_loss=min([pl for pl in pls if pl < 0], default=0.0),
        total_realized_pl=float(sum(pls)),
        total_commissions=float(sum(o.commission for o in orders)),
        profit_factor=profit_factor(pls),
        expectancy=expectancy(pls),
        kelly_fraction=kelly_fraction(pls),
        total_return=total_return,
        sharpe_ratio=sharpe_ratio(values),
        max_drawdown=float(calculate_max_drawdown(values)),
        value_at_risk_95=value_at_risk(pls, initial_capital, current_capital, 0.95),
        max_consecutive_wins=streaks['max_consecutive_wins'],
        max_consecutive_losses=streaks['max_consecutive_losses'],
        average_holding_days=average_holding_days(orders)
    )


def generate_report(metrics: PerformanceMetrics, title: str = "PAPER TRADING - PERFORMANCE REPORT") -> str:
    """
    Generate a formatted performance report

    Args:
        metrics: Performance metrics
        title: Report heading

    Returns:
        Formatted performance report string
    """
    report = []
    report.append("=" * 80)
    report.append(title)
    report.append("=" * 80)

    report.append("\n📈 RETURNS")
    report.append("-" * 40)
    report.append(f"Total Return:           {metrics.total_return:>15.2%}")
    report.append(f"Realized P&L:           {metrics.total_realized_pl:>15,.2f}")
    report.append(f"Commissions Paid:       {metrics.total_commissions:>15,.2f}")

    report.append("\n⚠️  RISK METRICS")
    report.append("-" * 40)
    report.append(f"Max Drawdown:           {metrics.max_drawdown:>15.2%}")
    report.append(f"VaR (95%):              {metrics.value_at_risk_95:>15,.2f}")
    report.append(f"Sharpe Ratio:           {metrics.sharpe_ratio:>15.2f}")

    report.append("\n🎯 TRADE STATISTICS")
    report.append("-" * 40)
    report.append(f"Total Orders:           {metrics.total_orders:>15d}")
    report.append(f"Closing Trades:         {metrics.closing_trades:>15d}")
    report.append(f"Winning Trades:         {metrics.winning_trades:>15d}")
    report.append(f"Losing Trades:          {metrics.losing_trades:>15d}")
    report.append(f"Win Rate:               {metrics.win_rate:>15.1%}")
    report.append(f"Profit Factor:          {metrics.profit_factor:>15.2f}")
    report.append(f"Average Win:            {metrics.average_win:>15,.2f}")
    report.append(f"Average Loss:           {metrics.average_loss:>15,.2f}")
    report.append(f"Largest Win:            {metrics.largest_win:>15,.2f}")
    report.append(f"Largest Loss:           {metrics.largest_loss:>15,.2f}")

    report.append("\n🔍 EDGE")
    report.append("-" * 40)
    report.append(f"Expectancy:             {metrics.expectancy:>15,.2f}")
    report.append(f"Kelly Fraction:         {metrics.kelly_fraction:>15.2%}")
    report.append(f"Max Consecutive Wins:   {metrics.max_consecutive_wins:>15d}")
    report.append(f"Max Consecutive Losses: {metrics.max_consecutive_losses:>15d}")
    report.append(f"Avg Holding (days):     {metrics.average_holding_days:>15.2f}")

    report.append("\n" + "=" * 80)
    return "\n".join(report)
