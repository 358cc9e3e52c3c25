"""
Paper Trading Engine

A simulated brokerage core built with numpy, pandas and numba that executes
orders against per-user virtual accounts priced by an oracle.

This engine provides:
- Order execution with commission and weighted average cost accounting
- Pre-trade risk gating and post-trade stop-loss monitoring
- Performance analytics derived from the order log
- Batch order processing and isolated strategy backtesting
"""

__version__ = "1.0.0"
__author__ = "Paper Trading Team"
