"""
Risk Management Components

- RiskManager: pre-trade gating, position monitoring and portfolio assessment
- RiskParameters: validated risk configuration with named profiles
"""

from .risk_manager import (
    RiskManager,
    RiskParameters,
    RiskDecision,
    RiskAction,
    RiskAssessment,
    RISK_PROFILES,
    DEFAULT_VOLATILITY,
    calculate_trailing_stop_price
)

__all__ = [
    'RiskManager',
    'RiskParameters',
    'RiskDecision',
    'RiskAction',
    'RiskAssessment',
    'RISK_PROFILES',
    'DEFAULT_VOLATILITY',
    'calculate_trailing_stop_price'
]
