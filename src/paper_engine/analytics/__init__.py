"""
Performance analytics over account order logs
"""

from .performance import (
    PerformanceMetrics,
    analyze,
    generate_report,
    calculate_max_drawdown,
    equity_snapshots,
    sharpe_ratio,
    value_at_risk,
    kelly_fraction,
    expectancy,
    profit_factor,
    win_rate
)

__all__ = [
    'PerformanceMetrics',
    'analyze',
    'generate_report',
    'calculate_max_drawdown',
    'equity_snapshots',
    'sharpe_ratio',
    'value_at_risk',
    'kelly_fraction',
    'expectancy',
    'profit_factor',
    'win_rate'
]
