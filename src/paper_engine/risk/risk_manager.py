"""
Risk Management Module

This module provides the risk controls wrapped around order execution:
- Pre-trade gating (max position size, daily-loss circuit breaker)
- Post-trade position monitoring (trailing stop, volatility-adjusted
  stop loss, time-based stop loss)
- Portfolio-level risk assessment with warnings and mitigation actions
- Named risk profiles (low, medium, high)

Position monitoring only recommends exits; the caller decides whether to
execute them.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np
import pandas as pd
from numba import njit

from ..exceptions import RiskLimitExceeded, ValidationError
from ..models import OrderSide

if TYPE_CHECKING:
    from ..core.ledger import AccountLedger

logger = logging.getLogger(__name__)


DEFAULT_VOLATILITY = 0.05
MIN_VOLATILITY_SAMPLES = 5
PRICE_EPSILON = 1e-9

# Portfolio assessment thresholds, fractions of initial capital
DRAWDOWN_WARNING = 0.10
CONCENTRATION_WARNING = 0.30
HIGH_RISK_DRAWDOWN = 0.15
MEDIUM_RISK_DRAWDOWN = 0.08


RISK_PROFILES: Dict[str, Dict[str, float]] = {
    'low': {'max_position_size': 0.05, 'max_daily_loss': 0.02},
    'medium': {'max_position_size': 0.10, 'max_daily_loss': 0.05},
    'high': {'max_position_size': 0.15, 'max_daily_loss': 0.08},
}


class RiskAction(Enum):
    """Risk monitor outcomes"""
    HOLD = "hold"
    SELL = "sell"


@dataclass
class RiskParameters:
    """Per-engine risk configuration, validated at construction"""
    max_position_size: float = 0.1  # fraction of initial capital per order
    max_daily_loss: float = 0.05  # fraction of initial capital
    stop_loss_percent: float = 0.02
    take_profit_percent: float = 0.05
    trailing_stop_percent: float = 0.03
    volatility_threshold: float = 0.08
    max_consecutive_losses: int = 3
    volatility_multiplier: float = 0.5
    max_holding_days: float = 5.0
    time_stop_exit_fraction: float = 0.5

    def __post_init__(self):
        fractions = (
            'max_position_size', 'max_daily_loss', 'stop_loss_percent',
            'take_profit_percent', 'volatility_threshold',
            'volatility_multiplier', 'time_stop_exit_fraction'
        )
        for name in fractions:
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValidationError(f"{name} must be in (0, 1], got {value}")
        if not 0 <= self.trailing_stop_percent < 1:
            raise ValidationError(
                f"trailing_stop_percent must be in [0, 1), got {self.trailing_stop_percent}"
            )
        if self.max_consecutive_losses < 1:
            raise ValidationError(
                f"max_consecutive_losses must be >= 1, got {self.max_consecutive_losses}"
            )
        if self.max_holding_days <= 0:
            raise ValidationError(f"max_holding_days must be positive, got {self.max_holding_days}")

    @classmethod
    def from_profile(cls, name: str, **overrides) -> 'RiskParameters':
        """Build parameters from a named profile ('low', 'medium', 'high')"""
        if name not in RISK_PROFILES:
            raise ValidationError(f"unknown risk profile: {name}")
        params = dict(RISK_PROFILES[name])
        params.update(overrides)
        return cls(**params)

    @classmethod
    def from_settings(cls, settings) -> 'RiskParameters':
        params = {
            'max_position_size': settings.max_position_size,
            'max_daily_loss': settings.max_daily_loss,
            'stop_loss_percent': settings.stop_loss_percent,
            'take_profit_percent': settings.take_profit_percent,
            'trailing_stop_percent': settings.trailing_stop_percent,
            'volatility_threshold': settings.volatility_threshold,
            'max_consecutive_losses': settings.max_consecutive_losses,
        }
        if settings.risk_profile:
            params.update(RISK_PROFILES.get(settings.risk_profile, {}))
        return cls(**params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RiskDecision:
    """Advisory outcome of a position evaluation"""
    action: RiskAction
    reason: str
    suggested_quantity: float = 0.0
    trigger: Optional[str] = None  # 'trailing_stop', 'stop_loss', 'time_stop'

    @property
    def should_sell(self) -> bool:
        return self.action == RiskAction.SELL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'reason': self.reason,
            'suggested_quantity': self.suggested_quantity,
            'trigger': self.trigger
        }


@dataclass
class RiskAssessment:
    """Portfolio-level risk snapshot"""
    risk_level: str
    warnings: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    daily_realized_loss: float = 0.0
    drawdown: float = 0.0
    consecutive_losses: int = 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['has_warnings'] = self.has_warnings
        return data


@njit
def calculate_trailing_stop_price(highest_price: float, trailing_stop_pct: float) -> float:
    """
    Trailing stop level below the highest observed price

    Args:
        highest_price: Highest price seen since entry
        trailing_stop_pct: Trailing distance as decimal (e.g., 0.03 for 3%)

    Returns:
        Trailing stop price
    """
    return highest_price * (1.0 - trailing_stop_pct)


def _same_day(ts: pd.Timestamp, now: pd.Timestamp) -> bool:
    if ts.tzinfo is not None and now.tzinfo is not None:
        ts = ts.tz_convert('UTC')
        now = now.tz_convert('UTC')
    return ts.date() == now.date()


class RiskManager:
    """
    Risk controls for a trading engine

    Features:
    - Position-size and daily-loss gating before buys
    - Trailing, volatility-adjusted and time-based stop recommendations
    - Consecutive-loss tracking and portfolio risk levels
    """

    def __init__(self, params: Optional[RiskParameters] = None):
        self.params = params or RiskParameters()

    # Pre-trade gate

    def check_pre_trade(self, ledger: 'AccountLedger', quantity: float, price: float,
                        now: Optional[pd.Timestamp] = None) -> None:
        """
        Gate a buy before it commits

        Raises:
            RiskLimitExceeded: Order too large, or today's realized losses
                exceed the daily loss limit
        """
        now = now if now is not None else ledger.clock()
        order_value = quantity * price
        max_position_value = ledger.initial_capital * self.params.max_position_size

        if order_value > max_position_value:
            raise RiskLimitExceeded(
                f"order value {order_value:.2f} exceeds max position size {max_position_value:.2f}",
                {'order_value': order_value, 'limit': max_position_value}
            )

        daily_loss = self.daily_realized_loss(ledger, now)
        max_daily_loss = ledger.initial_capital * self.params.max_daily_loss
        if daily_loss > max_daily_loss:
            raise RiskLimitExceeded(
                f"daily loss limit reached ({daily_loss:.2f} > {max_daily_loss:.2f})",
                {'daily_loss': daily_loss, 'limit': max_daily_loss}
            )

    def daily_realized_loss(self, ledger: 'AccountLedger', now: Optional[pd.Timestamp] = None) -> float:
        """Magnitude of today's losing sells"""
        now = now if now is not None else ledger.clock()
        losses = [
            order.realized_pl for order in ledger.get_orders()
            if order.realized_pl is not None and order.realized_pl < 0
            and _same_day(order.timestamp, now)
        ]
        return -sum(losses)

    # Position monitor

    def symbol_volatility(self, ledger: 'AccountLedger', symbol: str) -> float:
        """Standard deviation of period-over-period returns of the symbol's order prices"""
        prices = np.array([o.price for o in ledger.get_orders() if o.symbol == symbol], dtype=float)
        if len(prices) < MIN_VOLATILITY_SAMPLES:
            return DEFAULT_VOLATILITY
        returns = np.diff(prices) / prices[:-1]
        return float(np.std(returns))

    def dynamic_stop_loss(self, ledger: 'AccountLedger', symbol: str) -> float:
        volatility = self.symbol_volatility(ledger, symbol)
        return max(self.params.stop_loss_percent, volatility * self.params.volatility_multiplier)

    def evaluate_position(self, ledger: 'AccountLedger', symbol: str, current_price: float,
                          now: Optional[pd.Timestamp] = None) -> RiskDecision:
        """
        Evaluate one open position against the current price

        Checks run in a fixed order: trailing stop, then volatility-adjusted
        stop loss, then time-based stop. The first one that fires wins.
        """
        now = now if now is not None else ledger.clock()

        with ledger.lock:
            position = ledger.get_position(symbol)
            if position is None:
                return RiskDecision(RiskAction.HOLD, "no open position")

            highest = position.observe_price(current_price)
            quantity = position.quantity
            unrealized_fraction = position.unrealized_pl_fraction(current_price)
            unrealized_pl = position.unrealized_pl(current_price)
            holding_days = position.holding_days(now)

        # Trailing stop
        if self.params.trailing_stop_percent > 0:
            stop_price = calculate_trailing_stop_price(highest, self.params.trailing_stop_percent)
            if current_price <= stop_price + PRICE_EPSILON:
                return self._recommend_sell(
                    symbol, quantity, 'trailing_stop',
                    f"position below trailing stop: {current_price:.2f} <= {stop_price:.2f} "
                    f"({self.params.trailing_stop_percent:.1%} below high {highest:.2f})"
                )

        # Volatility-adjusted stop loss
        dynamic_stop = self.dynamic_stop_loss(ledger, symbol)
        if unrealized_fraction < -dynamic_stop:
            return self._recommend_sell(
                symbol, quantity, 'stop_loss',
                f"stop loss triggered: loss {unrealized_fraction:.2%} exceeds {dynamic_stop:.2%}"
            )

        # Time-based stop
        if holding_days > self.params.max_holding_days and unrealized_pl < 0:
            return self._recommend_sell(
                symbol, quantity * self.params.time_stop_exit_fraction, 'time_stop',
                f"time stop: held {holding_days:.1f} days at a loss"
            )

        return RiskDecision(RiskAction.HOLD, "within risk limits")

    def evaluate_positions(self, ledger: 'AccountLedger', prices: Dict[str, float],
                           now: Optional[pd.Timestamp] = None) -> Dict[str, RiskDecision]:
        """Evaluate every open position that has a price in ``prices``"""
        decisions = {}
        for symbol in list(ledger.get_all_positions()):
            if symbol in prices:
                decisions[symbol] = self.evaluate_position(ledger, symbol, prices[symbol], now)
        return decisions

    # Portfolio assessment

    def consecutive_losses(self, ledger: 'AccountLedger') -> int:
        """Length of the trailing run of losing sells"""
        count = 0
        for order in reversed(ledger.get_orders()):
            if order.side != OrderSide.SELL:
                continue
            if order.realized_pl is not None and order.realized_pl < 0:
                count += 1
            else:
                break
        return count

    def assess_portfolio(self, ledger: 'AccountLedger', prices: Dict[str, float],
                         now: Optional[pd.Timestamp] = None) -> RiskAssessment:
        """Portfolio risk snapshot with warnings and suggested actions"""
        now = now if now is not None else ledger.clock()
        initial = ledger.initial_capital
        positions = ledger.get_all_positions()

        unrealized = sum(
            pos.unrealized_pl(prices.get(symbol, pos.avg_cost)) for symbol, pos in positions.items()
        )
        total_pl = ledger.realized_pl_total() + unrealized
        drawdown = max(0.0, -total_pl) / initial
        daily_loss = self.daily_realized_loss(ledger, now)
        losing_streak = self.consecutive_losses(ledger)

        warnings = []
        actions = []

        if drawdown > DRAWDOWN_WARNING:
            warnings.append(f"account drawdown above {DRAWDOWN_WARNING:.0%}")
            actions.extend(["reduce high-risk positions", "tighten stop losses"])

        if daily_loss > initial * self.params.max_daily_loss:
            warnings.append("daily loss limit reached")
            actions.extend(["pause trading for today", "re-evaluate strategy"])

        if positions:
            largest = max(pos.cost_basis for pos in positions.values())
            if largest > initial * CONCENTRATION_WARNING:
                warnings.append("single position concentration too high")
                actions.extend(["diversify across symbols", "reduce single-symbol exposure"])

        if losing_streak >= self.params.max_consecutive_losses:
            warnings.append(f"{losing_streak} consecutive losing trades")
            actions.append("review recent entries before trading further")

        volatility = max(
            (self.symbol_volatility(ledger, symbol) for symbol in positions), default=0.0
        )
        if drawdown > HIGH_RISK_DRAWDOWN or volatility > self.params.volatility_threshold:
            risk_level = 'high'
        elif drawdown > MEDIUM_RISK_DRAWDOWN or volatility > DEFAULT_VOLATILITY:
            risk_level = 'medium'
        else:
            risk_level = 'low'

        if not actions:
            actions.append("risk under control, keep monitoring")

        return RiskAssessment(
            risk_level=risk_level,
            warnings=warnings,
            suggested_actions=actions,
            daily_realized_loss=daily_loss,
            drawdown=drawdown,
            consecutive_losses=losing_streak
        )

    def _recommend_sell(self, symbol: str, quantity: float, trigger: str, reason: str) -> RiskDecision:
        logger.info(f"Risk monitor recommends selling {quantity} {symbol}: {reason}")
        return RiskDecision(RiskAction.SELL, reason, suggested_quantity=quantity, trigger=trigger)
