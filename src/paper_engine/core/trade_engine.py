"""
Trade Engine - Order execution against per-user virtual accounts

This module is the single writer of account state:
- Lazy account creation (or rehydration from the store) per user
- Buy/sell execution at the oracle price or an explicit override
- Pre-trade risk gating before buys
- Persistence of the account and its order log after every execution
- Read-side snapshots: account, positions, orders, portfolio overview,
  performance and risk

Each account is mutated only while its ledger lock is held, so different
users trade concurrently while one user's orders are serialized.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from ..analytics import PerformanceMetrics, analyze
from ..config import Settings, get_settings
from ..database import InMemoryStore, KeyValueStore
from ..exceptions import TradingError, ValidationError
from ..models import Order, OrderSide, utc_now
from ..oracle import PriceOracle, normalize_symbol
from ..risk import RiskAssessment, RiskDecision, RiskManager, RiskParameters
from .batch_processor import BatchOrderProcessor
from .ledger import AccountLedger, validate_order_fields

logger = logging.getLogger(__name__)


def account_key(user_id: str) -> str:
    return f"account:{user_id}"


def orders_key(user_id: str) -> str:
    return f"orders:{user_id}"


class TradeEngine:
    """Paper trading execution engine"""

    def __init__(self,
                 oracle: PriceOracle,
                 risk_manager: Optional[RiskManager] = None,
                 store: Optional[KeyValueStore] = None,
                 settings: Optional[Settings] = None,
                 clock: Callable[[], pd.Timestamp] = utc_now):
        """
        Initialize trade engine

        Args:
            oracle: Price oracle shared by all accounts
            risk_manager: Risk controls (built from settings if omitted)
            store: Key-value persistence (in-memory if omitted)
            settings: Service settings
            clock: Source of execution timestamps
        """
        self.settings = settings or get_settings()
        self.oracle = oracle
        self.risk_manager = risk_manager or RiskManager(RiskParameters.from_settings(self.settings))
        self.store = store if store is not None else InMemoryStore()
        self.clock = clock

        self._ledgers: Dict[str, AccountLedger] = {}
        self._batch_processors: Dict[str, BatchOrderProcessor] = {}
        self._registry_lock = threading.Lock()

    @property
    def account_count(self) -> int:
        return len(self._ledgers)

    # Accounts

    def get_ledger(self, user_id: str) -> AccountLedger:
        """Return the user's ledger, loading it from the store or creating it on first use"""
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user id must be a non-empty string")

        with self._registry_lock:
            ledger = self._ledgers.get(user_id)
            if ledger is not None:
                return ledger

            data = self.store.load(account_key(user_id))
            if data is not None:
                orders = self.store.load(orders_key(user_id)) or []
                ledger = AccountLedger.from_dict(data, orders, clock=self.clock)
                logger.info(f"Loaded account {user_id} with {len(ledger.orders)} orders")
            else:
                ledger = AccountLedger(
                    user_id,
                    initial_capital=self.settings.initial_capital,
                    commission_rate=self.settings.commission_rate,
                    clock=self.clock
                )
                logger.info(f"Created account {user_id} with capital {ledger.initial_capital:.2f}")

            self._ledgers[user_id] = ledger
            return ledger

    def batch_processor(self, user_id: str) -> BatchOrderProcessor:
        """Per-account batch processor"""
        self.get_ledger(user_id)
        with self._registry_lock:
            processor = self._batch_processors.get(user_id)
            if processor is None:
                processor = BatchOrderProcessor(
                    self, user_id,
                    max_batch_size=self.settings.max_batch_size,
                    processing_delay=self.settings.batch_processing_delay_seconds
                )
                self._batch_processors[user_id] = processor
            return processor

    # Execution

    def execute_buy(self, user_id: str, symbol: str, quantity: float,
                    price_override: Optional[float] = None) -> Order:
        """
        Buy ``quantity`` shares of ``symbol``

        Args:
            user_id: Account owner
            symbol: Trading symbol
            quantity: Shares to buy (> 0)
            price_override: Execution price; the oracle price is used if omitted

        Returns:
            The executed Order

        Raises:
            ValidationError, RiskLimitExceeded, InsufficientFunds
        """
        return self._execute(OrderSide.BUY, user_id, symbol, quantity, price_override)

    def execute_sell(self, user_id: str, symbol: str, quantity: float,
                     price_override: Optional[float] = None) -> Order:
        """
        Sell ``quantity`` shares of ``symbol``

        Raises:
            ValidationError, InsufficientPosition
        """
        return self._execute(OrderSide.SELL, user_id, symbol, quantity, price_override)

    def _execute(self, side: OrderSide, user_id: str, symbol: str, quantity: float,
                 price_override: Optional[float]) -> Order:
        try:
            validate_order_fields(symbol, quantity, price_override)
            symbol = normalize_symbol(symbol)
            ledger = self.get_ledger(user_id)
            price = price_override if price_override is not None else self.oracle.get_price(symbol)

            with ledger.lock:
                if side == OrderSide.BUY:
                    self.risk_manager.check_pre_trade(ledger, quantity, price)
                state = ledger.snapshot()
                if side == OrderSide.BUY:
                    order = ledger.apply_buy(symbol, quantity, price)
                else:
                    order = ledger.apply_sell(symbol, quantity, price)
                try:
                    self._persist(ledger)
                except Exception:
                    # The order is only committed once it is durable
                    ledger.restore(state)
                    logger.error(f"Persisting {side.value} {quantity} {symbol} for {user_id} failed, rolled back")
                    raise

        except TradingError as e:
            logger.warning(f"Rejected {side.value} {quantity} {symbol} for {user_id}: {e}")
            raise

        logger.info(
            f"Executed {side.value} {order.quantity} {order.symbol} @ {order.price:.2f} "
            f"for {user_id} (commission {order.commission:.2f}, cash {ledger.cash_balance:.2f})"
        )
        return order

    def _persist(self, ledger: AccountLedger) -> None:
        self.store.save_many({
            account_key(ledger.user_id): ledger.to_dict(),
            orders_key(ledger.user_id): [o.to_dict() for o in ledger.orders],
        })

    # Snapshots

    def current_prices(self, ledger: AccountLedger) -> Dict[str, float]:
        return {symbol: self.oracle.get_price(symbol) for symbol in ledger.get_all_positions()}

    def get_positions(self, user_id: str) -> List[Dict[str, Any]]:
        ledger = self.get_ledger(user_id)
        return [pos.to_dict() for pos in ledger.get_all_positions().values()]

    def get_orders(self, user_id: str) -> List[Order]:
        return self.get_ledger(user_id).get_orders()

    def get_account(self, user_id: str) -> Dict[str, Any]:
        """Balance, total value marked to oracle prices and positions"""
        ledger = self.get_ledger(user_id)
        with ledger.lock:
            prices = self.current_prices(ledger)
            total_value = ledger.market_value(prices)
            balance = ledger.cash_balance
            positions = [pos.to_dict() for pos in ledger.positions.values()]

        for pos in positions:
            pos['current_price'] = prices[pos['symbol']]
            pos['market_value'] = pos['quantity'] * pos['current_price']

        return {
            'user_id': user_id,
            'balance': balance,
            'initial_balance': ledger.initial_capital,
            'total_value': total_value,
            'pnl_percent': round((total_value - ledger.initial_capital) / ledger.initial_capital * 100, 2),
            'positions': positions
        }

    def get_portfolio_overview(self, user_id: str) -> Dict[str, Any]:
        ledger = self.get_ledger(user_id)
        with ledger.lock:
            prices = self.current_prices(ledger)
            positions = ledger.get_all_positions()
            realized = ledger.realized_pl_total()

        total_cost = sum(pos.cost_basis for pos in positions.values())
        market_value = sum(pos.market_value(prices[symbol]) for symbol, pos in positions.items())
        unrealized = market_value - total_cost

        return {
            'total_cost': total_cost,
            'market_value': market_value,
            'unrealized_pl': unrealized,
            'realized_pl': realized,
            'total_pl': unrealized + realized,
            'return_rate': (unrealized + realized) / ledger.initial_capital,
            'position_count': len(positions)
        }

    def get_performance(self, user_id: str) -> PerformanceMetrics:
        ledger = self.get_ledger(user_id)
        current = ledger.market_value(self.current_prices(ledger))
        return analyze(ledger.get_orders(), ledger.initial_capital, current)

    # Risk

    def evaluate_risk(self, user_id: str) -> Dict[str, RiskDecision]:
        """Advisory exit recommendations for every open position"""
        ledger = self.get_ledger(user_id)
        decisions = self.risk_manager.evaluate_positions(ledger, self.current_prices(ledger), self.clock())
        if decisions:
            self._persist_locked(ledger)
        return decisions

    def assess_portfolio(self, user_id: str) -> RiskAssessment:
        ledger = self.get_ledger(user_id)
        return self.risk_manager.assess_portfolio(ledger, self.current_prices(ledger), self.clock())

    def _persist_locked(self, ledger: AccountLedger) -> None:
        # Trailing highs move on observation, so they are saved too
        with ledger.lock:
            self._persist(ledger)
