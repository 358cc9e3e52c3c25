"""
Backtesting API endpoints

Runs built-in strategies over a submitted price series on an isolated
simulated ledger. Live accounts are never touched.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..analytics import generate_report
from ..core import STRATEGIES, BacktestExecutor, TradeEngine
from .dependencies import get_engine, json_safe

logger = logging.getLogger(__name__)

router = APIRouter()


class PriceTick(BaseModel):
    """Historical price observation"""
    timestamp: str
    price: float
    symbol: str = "DEFAULT"
    moving_average: Optional[float] = None


class BacktestRequest(BaseModel):
    """Backtest request"""
    strategy: str = Field("mean_reversion", description="Built-in strategy name")
    data: List[PriceTick] = Field(..., min_length=1)
    config: Dict[str, Any] = {}
    initial_capital: Optional[float] = Field(None, gt=0)


@router.get("/strategies")
async def list_strategies():
    """Available built-in strategies"""
    return {'strategies': sorted(STRATEGIES)}


@router.post("/run")
async def run_backtest(request: BacktestRequest, engine: TradeEngine = Depends(get_engine)):
    """Run a backtest and return simulated orders with the performance summary"""
    executor = BacktestExecutor(
        initial_capital=request.initial_capital or engine.settings.initial_capital,
        commission_rate=engine.settings.commission_rate
    )
    records = [tick.model_dump(exclude_none=True) for tick in request.data]
    result = executor.run(request.strategy, records, config=request.config)

    response = json_safe(result.to_dict())
    response['report'] = generate_report(result.performance, title=f"BACKTEST - {result.strategy_id.upper()}")
    return response
