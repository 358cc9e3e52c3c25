"""
Shared request dependencies and response helpers
"""

import math
from typing import Any

from fastapi import Header, Request

from ..core import TradeEngine


def get_engine(request: Request) -> TradeEngine:
    """Trade engine attached to the running application"""
    return request.app.state.engine


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Caller identity from the X-User-Id header (authentication happens upstream)"""
    return x_user_id.strip()


def json_safe(value: Any) -> Any:
    """Replace non-finite floats, which JSON cannot carry, with strings"""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value
