"""
Trading exceptions

Typed, expected outcomes of trading operations. Every error carries a stable
machine-readable ``kind`` and a human-readable ``reason`` so the API layer can
report rejections without leaking internal state.
"""

from typing import Any, Dict, Optional


class TradingError(Exception):
    """Base class for business-rule rejections"""

    kind = "trading_error"

    def __init__(self, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(reason)
        self.reason = reason
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason}

    def __str__(self) -> str:
        return f"{self.kind}: {self.reason}"


class ValidationError(TradingError):
    """Malformed symbol, quantity or price"""

    kind = "validation_error"


class InsufficientFunds(TradingError):
    """Cash balance does not cover the order cost plus commission"""

    kind = "insufficient_funds"


class InsufficientPosition(TradingError):
    """No open position, or fewer shares held than requested"""

    kind = "insufficient_position"


class RiskLimitExceeded(TradingError):
    """Pre-trade risk gate rejected the order"""

    kind = "risk_limit_exceeded"


class OracleUnavailable(TradingError):
    """Live quote could not be obtained; the oracle degrades to fallback prices"""

    kind = "oracle_unavailable"


class BatchInProgress(TradingError):
    """A batch is already being processed for this account"""

    kind = "batch_in_progress"
