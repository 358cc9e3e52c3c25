"""
Account Ledger - Per-user cash, positions and order log

This module owns the state of a single virtual account:
- Cash balance and immutable initial capital
- Open positions with weighted average cost and trailing high
- Append-only order log with strictly increasing timestamps
- Capital conservation checks

Mutations happen only through apply_buy()/apply_sell(), which the execution
paths call while holding the ledger lock.
"""

import math
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
from numba import njit

from ..exceptions import InsufficientFunds, InsufficientPosition, ValidationError
from ..models import QUANTITY_EPSILON, Order, OrderSide, Position, utc_now


def calculate_commission(notional: float, commission_rate: float) -> float:
    """Fixed-rate commission on traded notional"""
    return notional * commission_rate


def calculate_buy_cost(quantity: float, price: float, commission_rate: float) -> Tuple[float, float]:
    """
    Cost of a buy

    Returns:
        (commission, total_cost) where total_cost = quantity * price + commission
    """
    notional = quantity * price
    commission = calculate_commission(notional, commission_rate)
    return commission, notional + commission


def calculate_sell_proceeds(quantity: float, price: float, avg_cost: float,
                            commission_rate: float) -> Tuple[float, float, float]:
    """
    Proceeds of a sell

    Returns:
        (commission, proceeds, realized_pl) with proceeds net of commission and
        realized_pl = (price - avg_cost) * quantity - commission
    """
    notional = quantity * price
    commission = calculate_commission(notional, commission_rate)
    proceeds = notional - commission
    realized_pl = (price - avg_cost) * quantity - commission
    return commission, proceeds, realized_pl


@njit
def weighted_average_cost(old_avg_cost: float, old_quantity: float,
                          price: float, added_quantity: float) -> float:
    """
    Quantity-weighted average entry price after adding to a position

    Args:
        old_avg_cost: Current average cost
        old_quantity: Current quantity
        price: Fill price of the added shares
        added_quantity: Shares added

    Returns:
        New average cost
    """
    total_quantity = old_quantity + added_quantity
    if total_quantity <= 0.0:
        return 0.0
    return (old_avg_cost * old_quantity + price * added_quantity) / total_quantity


def validate_order_fields(symbol: str, quantity: float, price: Optional[float] = None) -> None:
    """Raise ValidationError for malformed order input"""
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError("symbol must be a non-empty string")
    if (isinstance(quantity, bool) or not isinstance(quantity, (int, float))
            or not quantity > 0 or not math.isfinite(quantity)):
        raise ValidationError(f"quantity must be a positive number, got {quantity!r}")
    if price is not None:
        if (isinstance(price, bool) or not isinstance(price, (int, float))
                or not price > 0 or not math.isfinite(price)):
            raise ValidationError(f"price must be a positive number, got {price!r}")


class AccountLedger:
    """Single user's virtual account"""

    def __init__(self, user_id: str, initial_capital: float = 100000.0,
                 commission_rate: float = 0.001, cash_balance: Optional[float] = None,
                 clock: Callable[[], pd.Timestamp] = utc_now):
        """
        Initialize account ledger

        Args:
            user_id: Account owner
            initial_capital: Capital snapshot at creation
            commission_rate: Commission rate applied to both sides
            cash_balance: Current cash (defaults to initial capital)
            clock: Source of execution timestamps
        """
        if initial_capital <= 0:
            raise ValidationError(f"initial capital must be positive, got {initial_capital}")

        self.user_id = user_id
        self.initial_capital = float(initial_capital)
        self.cash_balance = float(initial_capital if cash_balance is None else cash_balance)
        self.commission_rate = commission_rate
        self.clock = clock
        self.positions: Dict[str, Position] = {}
        self.orders: List[Order] = []

        # Serializes every read-modify-write on this account
        self.lock = threading.RLock()

    # Mutations

    def apply_buy(self, symbol: str, quantity: float, price: float,
                  timestamp: Optional[pd.Timestamp] = None) -> Order:
        """
        Debit cash, add to the position and append a buy order

        Raises:
            ValidationError: Malformed input
            InsufficientFunds: Cash does not cover quantity * price + commission
        """
        validate_order_fields(symbol, quantity, price)
        commission, total_cost = calculate_buy_cost(quantity, price, self.commission_rate)

        with self.lock:
            if self.cash_balance < total_cost:
                raise InsufficientFunds(
                    "insufficient balance",
                    {'required': total_cost, 'available': self.cash_balance}
                )

            ts = self._next_timestamp(timestamp)
            position = self.positions.get(symbol)
            if position is None:
                self.positions[symbol] = Position(symbol, quantity, price, opened_at=ts)
            else:
                position.avg_cost = weighted_average_cost(
                    position.avg_cost, position.quantity, price, quantity
                )
                position.quantity += quantity
                position.observe_price(price)

            self.cash_balance -= total_cost
            order = Order(
                id=self._order_id(),
                user_id=self.user_id,
                symbol=symbol,
                side=OrderSide.BUY,
                quantity=quantity,
                price=price,
                commission=commission,
                timestamp=ts,
                realized_pl=None
            )
            self.orders.append(order)
            return order

    def apply_sell(self, symbol: str, quantity: float, price: float,
                   timestamp: Optional[pd.Timestamp] = None) -> Order:
        """
        Credit proceeds, reduce the position and append a sell order

        Raises:
            ValidationError: Malformed input
            InsufficientPosition: No position or fewer shares than requested
        """
        validate_order_fields(symbol, quantity, price)

        with self.lock:
            position = self.positions.get(symbol)
            if position is None or position.quantity + QUANTITY_EPSILON < quantity:
                raise InsufficientPosition(
                    "insufficient position",
                    {'requested': quantity, 'held': position.quantity if position else 0.0}
                )

            commission, proceeds, realized_pl = calculate_sell_proceeds(
                quantity, price, position.avg_cost, self.commission_rate
            )
            ts = self._next_timestamp(timestamp)

            self.cash_balance += proceeds
            position.quantity -= quantity
            position.realized_pl += realized_pl

            # Remove position if fully closed
            if position.quantity < QUANTITY_EPSILON:
                del self.positions[symbol]

            order = Order(
                id=self._order_id(),
                user_id=self.user_id,
                symbol=symbol,
                side=OrderSide.SELL,
                quantity=quantity,
                price=price,
                commission=commission,
                timestamp=ts,
                realized_pl=realized_pl
            )
            self.orders.append(order)
            return order

    # Reads

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    def get_all_positions(self) -> Dict[str, Position]:
        with self.lock:
            return {symbol: pos.copy() for symbol, pos in self.positions.items()}

    def get_orders(self) -> List[Order]:
        with self.lock:
            return list(self.orders)

    def cost_basis(self) -> float:
        return sum(pos.cost_basis for pos in self.positions.values())

    def total_commissions(self) -> float:
        return sum(order.commission for order in self.orders)

    def realized_pl_total(self) -> float:
        return sum(order.realized_pl for order in self.orders if order.realized_pl is not None)

    def market_value(self, prices: Dict[str, float]) -> float:
        """Cash plus positions marked at ``prices`` (cost basis where a price is missing)"""
        value = self.cash_balance
        for symbol, pos in self.positions.items():
            value += pos.market_value(prices.get(symbol, pos.avg_cost))
        return value

    def verify(self, tolerance: float = 1e-6) -> bool:
        """
        Check capital conservation

        cash + cost basis must equal initial capital minus buy commissions plus
        realized PL (which already nets sell commissions), and cash is never negative.
        """
        with self.lock:
            buy_commissions = sum(o.commission for o in self.orders if o.side == OrderSide.BUY)
            expected = self.initial_capital - buy_commissions + self.realized_pl_total()
            actual = self.cash_balance + self.cost_basis()
            return self.cash_balance >= -tolerance and abs(actual - expected) <= tolerance * max(1.0, self.initial_capital)

    def snapshot(self) -> Tuple[float, Dict[str, Position], List[Order]]:
        """Copy of the mutable state, for restore() if a commit fails"""
        with self.lock:
            positions = {symbol: pos.copy() for symbol, pos in self.positions.items()}
            return self.cash_balance, positions, list(self.orders)

    def restore(self, state: Tuple[float, Dict[str, Position], List[Order]]) -> None:
        cash_balance, positions, orders = state
        with self.lock:
            self.cash_balance = cash_balance
            self.positions = {symbol: pos.copy() for symbol, pos in positions.items()}
            self.orders = list(orders)

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'user_id': self.user_id,
                'initial_capital': self.initial_capital,
                'cash_balance': self.cash_balance,
                'commission_rate': self.commission_rate,
                'positions': [pos.to_dict() for pos in self.positions.values()]
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], orders: Optional[List[Dict[str, Any]]] = None,
                  clock: Callable[[], pd.Timestamp] = utc_now) -> 'AccountLedger':
        ledger = cls(
            user_id=data['user_id'],
            initial_capital=data['initial_capital'],
            commission_rate=data.get('commission_rate', 0.001),
            cash_balance=data['cash_balance'],
            clock=clock
        )
        for pos_data in data.get('positions', []):
            pos = Position.from_dict(pos_data)
            ledger.positions[pos.symbol] = pos
        ledger.orders = [Order.from_dict(o) for o in (orders or [])]
        return ledger

    # Internal helpers

    def _next_timestamp(self, timestamp: Optional[pd.Timestamp] = None) -> pd.Timestamp:
        """Execution time, bumped so the order log stays strictly increasing"""
        ts = pd.Timestamp(timestamp) if timestamp is not None else self.clock()
        if self.orders:
            last = self.orders[-1].timestamp
            if ts <= last:
                ts = last + pd.Timedelta(microseconds=1)
        return ts

    def _order_id(self) -> str:
        return f"ORDER_{self.user_id}_{uuid.uuid4().hex[:12]}"
