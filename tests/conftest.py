"""
Shared fixtures for the paper trading engine tests
"""

import pandas as pd
import pytest

from paper_engine.config import Settings
from paper_engine.core import TradeEngine
from paper_engine.database import InMemoryStore
from paper_engine.oracle import PriceOracle


TEST_PRICES = {
    "AAPL": 150.0,
    "MSFT": 300.0,
    "TSLA": 200.0,
}


class FixedClock:
    """Deterministic clock that only moves when told to"""

    def __init__(self, start: str = "2024-01-02 14:30:00"):
        self.now = pd.Timestamp(start, tz="UTC")

    def __call__(self) -> pd.Timestamp:
        return self.now

    def advance(self, **kwargs) -> pd.Timestamp:
        self.now = self.now + pd.Timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    params = {
        "alpaca_api_key": None,
        "alpaca_api_secret": None,
        "database_url": None,
        "risk_profile": None,
        "initial_capital": 100000.0,
        "commission_rate": 0.001,
        "max_position_size": 0.2,
        "max_daily_loss": 0.05,
        "stop_loss_percent": 0.02,
        "trailing_stop_percent": 0.03,
        "batch_processing_delay_seconds": 0.0,
        "max_batch_size": 10,
    }
    params.update(overrides)
    return Settings(_env_file=None, **params)


def make_oracle(settings: Settings, prices=None) -> PriceOracle:
    # Frozen monotonic clock: cached prices never expire during a test
    return PriceOracle(settings=settings, static_prices=prices or TEST_PRICES, clock=lambda: 0.0)


def make_engine(settings: Settings = None, store=None, clock=None) -> TradeEngine:
    settings = settings or make_settings()
    return TradeEngine(
        make_oracle(settings),
        store=store if store is not None else InMemoryStore(),
        settings=settings,
        clock=clock or FixedClock()
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def engine(settings, store, clock):
    return make_engine(settings, store, clock)
