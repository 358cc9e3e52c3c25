"""
Price Oracle Components

- PriceOracle: TTL-cached symbol pricing with live quotes and fallback tiers
"""

from .price_oracle import (
    PriceOracle,
    PriceSource,
    CachedPrice,
    DEFAULT_PRICES,
    normalize_symbol
)

__all__ = [
    'PriceOracle',
    'PriceSource',
    'CachedPrice',
    'DEFAULT_PRICES',
    'normalize_symbol'
]
