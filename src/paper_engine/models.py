"""
Trading data model

Plain records shared by the ledger, the risk layer, analytics and the API:
order side, immutable order record and open position.
"""

from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

import pandas as pd

QUANTITY_EPSILON = 1e-8


class OrderSide(Enum):
    """Order sides"""
    BUY = "buy"
    SELL = "sell"


class Order(NamedTuple):
    """Immutable record of one execution"""
    id: str
    user_id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    commission: float
    timestamp: pd.Timestamp
    realized_pl: Optional[float]  # None for buys

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'symbol': self.symbol,
            'side': self.side.value,
            'quantity': self.quantity,
            'price': self.price,
            'commission': self.commission,
            'timestamp': self.timestamp.isoformat(),
            'realized_pl': self.realized_pl
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Order':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            symbol=data['symbol'],
            side=OrderSide(data['side']),
            quantity=float(data['quantity']),
            price=float(data['price']),
            commission=float(data['commission']),
            timestamp=pd.Timestamp(data['timestamp']),
            realized_pl=None if data.get('realized_pl') is None else float(data['realized_pl'])
        )


class Position:
    """Open position tracking"""

    def __init__(self, symbol: str, quantity: float, avg_cost: float,
                 opened_at: pd.Timestamp, realized_pl: float = 0.0,
                 highest_price: Optional[float] = None):
        self.symbol = symbol
        self.quantity = quantity
        self.avg_cost = avg_cost
        self.opened_at = opened_at
        self.realized_pl = realized_pl
        self.highest_price = highest_price if highest_price is not None else avg_cost

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.avg_cost

    def market_value(self, current_price: float) -> float:
        return self.quantity * current_price

    def unrealized_pl(self, current_price: float) -> float:
        return (current_price - self.avg_cost) * self.quantity

    def unrealized_pl_fraction(self, current_price: float) -> float:
        if self.avg_cost <= 0:
            return 0.0
        return (current_price - self.avg_cost) / self.avg_cost

    def observe_price(self, current_price: float) -> float:
        """Track the highest price seen since entry and return it"""
        if current_price > self.highest_price:
            self.highest_price = current_price
        return self.highest_price

    def holding_days(self, now: pd.Timestamp) -> float:
        return (now - self.opened_at).total_seconds() / 86400.0

    def copy(self) -> 'Position':
        return Position(self.symbol, self.quantity, self.avg_cost, self.opened_at,
                        self.realized_pl, self.highest_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'quantity': self.quantity,
            'avg_cost': self.avg_cost,
            'realized_pl': self.realized_pl,
            'highest_price': self.highest_price,
            'opened_at': self.opened_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Position':
        return cls(
            symbol=data['symbol'],
            quantity=float(data['quantity']),
            avg_cost=float(data['avg_cost']),
            opened_at=pd.Timestamp(data['opened_at']),
            realized_pl=float(data.get('realized_pl', 0.0)),
            highest_price=data.get('highest_price')
        )

    def __repr__(self) -> str:
        return (f"Position({self.symbol!r}, quantity={self.quantity}, "
                f"avg_cost={self.avg_cost:.4f}, realized_pl={self.realized_pl:.4f})")


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz='UTC')

