"""
Core Engine Components

This module contains the core components of the paper trading engine:
- AccountLedger: Per-user cash, positions and order log
- TradeEngine: Order execution and account snapshots
- BatchOrderProcessor: Sequential batch execution per account
- BacktestExecutor: Strategy replay on an isolated ledger
"""

from .ledger import (
    AccountLedger,
    calculate_commission,
    calculate_buy_cost,
    calculate_sell_proceeds,
    weighted_average_cost,
    validate_order_fields
)

from .batch_processor import BatchOrder, BatchOrderProcessor

from .trade_engine import TradeEngine

from .backtest_executor import (
    BacktestExecutor,
    BacktestResult,
    Tick,
    STRATEGIES,
    prepare_ticks
)

__all__ = [
    'AccountLedger',
    'calculate_commission',
    'calculate_buy_cost',
    'calculate_sell_proceeds',
    'weighted_average_cost',
    'validate_order_fields',
    'BatchOrder',
    'BatchOrderProcessor',
    'TradeEngine',
    'BacktestExecutor',
    'BacktestResult',
    'Tick',
    'STRATEGIES',
    'prepare_ticks'
]
