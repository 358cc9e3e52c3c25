"""
Backtest Executor - Strategy replay over historical prices

This module replays a price series through a signal function:
- Ticks are normalized from records or a DataFrame and ordered by timestamp
- Moving averages and previous prices are attached per symbol
- Signals execute against an isolated ledger that shares the live
  commission and P&L formulas but never touches a live account
- Results carry the simulated orders and the performance summary

Signal functions have the form ``(config, tick, positions) -> signal`` where
signal is a mapping ``{'action': 'hold'|'buy'|'sell', 'quantity': float}``.
Signals that cannot execute are skipped without halting the replay.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Union

import numpy as np
import pandas as pd

from ..analytics import PerformanceMetrics, analyze
from ..exceptions import InsufficientFunds, InsufficientPosition, ValidationError
from ..models import Order, Position
from .ledger import AccountLedger

logger = logging.getLogger(__name__)


class Tick(NamedTuple):
    """One historical observation"""
    timestamp: pd.Timestamp
    symbol: str
    price: float
    moving_average: float
    previous_price: Optional[float]


SignalFunction = Callable[[Dict[str, Any], Tick, Dict[str, Position]], Optional[Dict[str, Any]]]


def mean_reversion_strategy(config: Dict[str, Any], tick: Tick,
                            positions: Dict[str, Position]) -> Dict[str, Any]:
    """Buy below the moving average when flat, exit above it by the exit threshold"""
    position = positions.get(tick.symbol)
    if position is None and tick.price < tick.moving_average:
        return {'action': 'buy', 'quantity': config.get('quantity', 100)}
    if position is not None and tick.price > tick.moving_average * (1 + config.get('exit_threshold', 0.05)):
        return {'action': 'sell', 'quantity': position.quantity}
    return {'action': 'hold'}


def momentum_strategy(config: Dict[str, Any], tick: Tick,
                      positions: Dict[str, Position]) -> Dict[str, Any]:
    """Buy an up-tick when flat, exit on a down-tick"""
    if tick.previous_price is None:
        return {'action': 'hold'}
    position = positions.get(tick.symbol)
    if position is None and tick.price > tick.previous_price:
        return {'action': 'buy', 'quantity': config.get('quantity', 100)}
    if position is not None and tick.price < tick.previous_price:
        return {'action': 'sell', 'quantity': position.quantity}
    return {'action': 'hold'}


STRATEGIES: Dict[str, SignalFunction] = {
    'mean_reversion': mean_reversion_strategy,
    'momentum': momentum_strategy,
}


@dataclass
class BacktestResult:
    """Outcome of one backtest run"""
    strategy_id: str
    orders: List[Order]
    performance: PerformanceMetrics
    initial_capital: float
    final_cash: float
    final_value: float
    ticks_processed: int
    skipped_signals: int
    open_positions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy_id': self.strategy_id,
            'orders': [o.to_dict() for o in self.orders],
            'performance': self.performance.to_dict(),
            'initial_capital': self.initial_capital,
            'final_cash': self.final_cash,
            'final_value': self.final_value,
            'ticks_processed': self.ticks_processed,
            'skipped_signals': self.skipped_signals,
            'open_positions': self.open_positions
        }


def prepare_ticks(series: Union[pd.DataFrame, Iterable[Dict[str, Any]]],
                  ma_period: int = 20, default_symbol: str = 'DEFAULT') -> List[Tick]:
    """
    Normalize a historical series into ordered ticks

    Args:
        series: DataFrame or records with ``price`` (or ``close``) and
            ``timestamp`` (or ``date``); ``symbol`` and ``moving_average``
            are optional
        ma_period: Rolling window used when no moving average is supplied
        default_symbol: Symbol for single-instrument series

    Returns:
        Ticks sorted by timestamp, stable for equal timestamps
    """
    if isinstance(ma_period, bool) or not isinstance(ma_period, int) or ma_period < 1:
        raise ValidationError(f"ma_period must be a positive integer, got {ma_period!r}")

    df = series.copy() if isinstance(series, pd.DataFrame) else pd.DataFrame(list(series))
    if df.empty:
        return []

    df = df.rename(columns={'close': 'price', 'date': 'timestamp', 'movingAverage': 'moving_average'})
    if 'price' not in df.columns:
        raise ValidationError("historical series needs a 'price' or 'close' column")
    if 'timestamp' not in df.columns:
        if isinstance(df.index, pd.DatetimeIndex):
            df = df.rename_axis('timestamp').reset_index()
        else:
            raise ValidationError("historical series needs a 'timestamp' or 'date' column")
    if 'symbol' not in df.columns:
        df['symbol'] = default_symbol

    df['timestamp'] = pd.to_datetime(df['timestamp'])
    df['price'] = pd.to_numeric(df['price'], errors='coerce')
    df['symbol'] = df['symbol'].astype(str).str.upper()

    invalid = ~np.isfinite(df['price']) | (df['price'] <= 0)
    if invalid.any():
        logger.warning(f"Dropping {int(invalid.sum())} ticks with invalid prices")
        df = df[~invalid]

    df = df.sort_values('timestamp', kind='mergesort').reset_index(drop=True)

    grouped = df.groupby('symbol', sort=False)['price']
    rolling_ma = grouped.transform(lambda p: p.rolling(ma_period, min_periods=1).mean())
    if 'moving_average' in df.columns:
        df['moving_average'] = pd.to_numeric(df['moving_average'], errors='coerce').fillna(rolling_ma)
    else:
        df['moving_average'] = rolling_ma
    df['previous_price'] = grouped.shift(1)

    return [
        Tick(
            timestamp=row.timestamp,
            symbol=row.symbol,
            price=float(row.price),
            moving_average=float(row.moving_average),
            previous_price=None if pd.isna(row.previous_price) else float(row.previous_price)
        )
        for row in df.itertuples(index=False)
    ]


class BacktestExecutor:
    """Strategy replay against an isolated simulated ledger"""

    def __init__(self,
                 initial_capital: float = 100000.0,
                 commission_rate: float = 0.001):
        """
        Initialize backtest executor

        Args:
            initial_capital: Starting capital of the simulated ledger
            commission_rate: Commission rate per trade
        """
        if initial_capital <= 0:
            raise ValidationError(f"initial capital must be positive, got {initial_capital}")
        self.initial_capital = initial_capital
        self.commission_rate = commission_rate

    def run(self,
            strategy: Union[str, SignalFunction],
            series: Union[pd.DataFrame, Iterable[Dict[str, Any]]],
            config: Optional[Dict[str, Any]] = None,
            strategy_id: Optional[str] = None) -> BacktestResult:
        """
        Run a backtest

        Args:
            strategy: Built-in strategy name or signal function
            series: Historical price series
            config: Strategy configuration passed to every signal call
            strategy_id: Identifier for the result (generated if omitted)

        Returns:
            BacktestResult
        """
        config = dict(config or {})
        if isinstance(strategy, str):
            if strategy not in STRATEGIES:
                raise ValidationError(f"unknown strategy: {strategy}")
            strategy_id = strategy_id or strategy
            signal_func = STRATEGIES[strategy]
        elif callable(strategy):
            signal_func = strategy
            strategy_id = strategy_id or getattr(strategy, '__name__', 'custom')
        else:
            raise ValidationError("strategy must be a built-in name or a callable")

        try:
            ma_period = int(config.get('ma_period', 20))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"ma_period must be a positive integer, got {config.get('ma_period')!r}")
        ticks = prepare_ticks(series, ma_period=ma_period)
        ledger = AccountLedger(
            f"BACKTEST_{uuid.uuid4().hex[:8]}",
            initial_capital=self.initial_capital,
            commission_rate=self.commission_rate
        )

        logger.info(f"Starting backtest {strategy_id} over {len(ticks)} ticks")
        last_prices: Dict[str, float] = {}
        skipped = 0

        for tick in ticks:
            last_prices[tick.symbol] = tick.price
            positions = ledger.get_all_positions()
            signal = signal_func(config, tick, positions)
            if not self._apply_signal(ledger, tick, signal):
                skipped += 1

        final_value = ledger.market_value(last_prices)
        performance = analyze(ledger.orders, self.initial_capital, final_value)

        logger.info(f"Backtest {strategy_id} completed: {len(ledger.orders)} orders, "
                    f"total return {performance.total_return:.2%}")

        return BacktestResult(
            strategy_id=strategy_id,
            orders=list(ledger.orders),
            performance=performance,
            initial_capital=self.initial_capital,
            final_cash=ledger.cash_balance,
            final_value=final_value,
            ticks_processed=len(ticks),
            skipped_signals=skipped,
            open_positions=[pos.to_dict() for pos in ledger.positions.values()]
        )

    def _apply_signal(self, ledger: AccountLedger, tick: Tick, signal: Any) -> bool:
        """Execute one signal; returns False when it was skipped"""
        if not isinstance(signal, dict):
            return signal is None
        action = signal.get('action', 'hold')
        if action == 'hold':
            return True

        quantity = signal.get('quantity')
        try:
            if action == 'buy':
                ledger.apply_buy(tick.symbol, quantity, tick.price, timestamp=tick.timestamp)
            elif action == 'sell':
                ledger.apply_sell(tick.symbol, quantity, tick.price, timestamp=tick.timestamp)
            else:
                logger.debug(f"Ignoring unknown action {action!r} at {tick.timestamp}")
                return False
        except (ValidationError, InsufficientFunds, InsufficientPosition) as e:
            logger.debug(f"Skipping {action} {quantity} {tick.symbol} at {tick.timestamp}: {e.reason}")
            return False
        return True
