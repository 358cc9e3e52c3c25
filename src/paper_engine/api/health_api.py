"""
Health check API endpoints

Provides system status, version information, and engine state.
"""

import sys
import time
from datetime import datetime
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import __version__
from ..core import TradeEngine
from .dependencies import get_engine

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str
    timestamp: datetime
    uptime_seconds: float
    version: str
    system_info: Dict[str, Any]
    engine_status: Dict[str, Any]


# Track startup time
startup_time = time.time()


@router.get("/", response_model=HealthResponse)
async def health_check(engine: TradeEngine = Depends(get_engine)):
    """
    Health check endpoint

    Returns system resource usage and the state of the trading engine.
    """
    memory = psutil.virtual_memory()
    system_info = {
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_percent": memory.percent,
        "memory_available_gb": memory.available / (1024**3),
        "python_version": sys.version,
        "platform": sys.platform
    }

    engine_status = {
        "accounts_loaded": engine.account_count,
        "store": type(engine.store).__name__,
        "live_quotes": engine.settings.has_alpaca_credentials,
        "price_cache_ttl_seconds": engine.oracle.ttl,
        "risk_parameters": engine.risk_manager.params.to_dict()
    }

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(),
        uptime_seconds=time.time() - startup_time,
        version=__version__,
        system_info=system_info,
        engine_status=engine_status
    )
