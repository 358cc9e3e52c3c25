"""
Configuration management for the Paper Trading Engine
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service configuration settings"""

    # Accounts
    initial_capital: float = 100000.0
    commission_rate: float = 0.001  # 0.1% of notional, both sides

    # Price oracle
    price_cache_ttl_seconds: float = 60.0
    default_price: float = 100.0
    alpaca_api_key: Optional[str] = None
    alpaca_api_secret: Optional[str] = None
    alpaca_data_url: str = "https://data.alpaca.markets/v2"
    quote_timeout_seconds: float = 5.0

    # Batch processing
    batch_processing_delay_seconds: float = 0.1
    max_batch_size: int = 10

    # Risk defaults
    risk_profile: Optional[str] = None  # 'low', 'medium' or 'high'
    max_position_size: float = 0.1
    max_daily_loss: float = 0.05
    stop_loss_percent: float = 0.02
    take_profit_percent: float = 0.05
    trailing_stop_percent: float = 0.03
    volatility_threshold: float = 0.08
    max_consecutive_losses: int = 3

    # Persistence
    database_url: Optional[str] = None

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_prefix": "", "case_sensitive": False}

    @property
    def has_alpaca_credentials(self) -> bool:
        return bool(self.alpaca_api_key and self.alpaca_api_secret)


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings()
