"""
Trading API endpoints

Provides REST access to the paper trading engine: market orders, account
and position snapshots, order history, performance analytics, risk
monitoring and per-account batch processing.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..analytics import generate_report
from ..core import TradeEngine
from .dependencies import get_engine, get_user_id, json_safe

logger = logging.getLogger(__name__)

router = APIRouter()


class TradeRequest(BaseModel):
    """Market order request"""
    symbol: str = Field(..., min_length=1, description="Trading symbol")
    shares: float = Field(..., gt=0, description="Number of shares")
    price: Optional[float] = Field(None, gt=0, description="Execution price override")


class BatchOrderRequest(BaseModel):
    """One order of a batch; validated as a whole on submission"""
    symbol: str
    side: str
    quantity: float
    price: Optional[float] = None


class BatchRequest(BaseModel):
    """Batch submission"""
    orders: List[BatchOrderRequest] = Field(..., min_length=1)


async def _trade(engine: TradeEngine, side: str, user_id: str, request: TradeRequest) -> Dict[str, Any]:
    if request.price is None:
        await engine.oracle.prefetch(request.symbol)

    if side == 'buy':
        order = engine.execute_buy(user_id, request.symbol, request.shares, request.price)
    else:
        order = engine.execute_sell(user_id, request.symbol, request.shares, request.price)

    return {
        'success': True,
        'order': order.to_dict(),
        'balance': engine.get_ledger(user_id).cash_balance
    }


@router.post("/buy")
async def buy(request: TradeRequest,
              user_id: str = Depends(get_user_id),
              engine: TradeEngine = Depends(get_engine)):
    """Buy shares at the current (or given) price"""
    return await _trade(engine, 'buy', user_id, request)


@router.post("/sell")
async def sell(request: TradeRequest,
               user_id: str = Depends(get_user_id),
               engine: TradeEngine = Depends(get_engine)):
    """Sell shares of an open position"""
    return await _trade(engine, 'sell', user_id, request)


@router.get("/account")
async def get_account(user_id: str = Depends(get_user_id),
                      engine: TradeEngine = Depends(get_engine)):
    """Account balance, total value and positions"""
    ledger = engine.get_ledger(user_id)
    await engine.oracle.prefetch(list(ledger.get_all_positions()))
    account = engine.get_account(user_id)
    account['overview'] = engine.get_portfolio_overview(user_id)
    return account


@router.get("/positions")
async def get_positions(user_id: str = Depends(get_user_id),
                        engine: TradeEngine = Depends(get_engine)):
    """Open positions"""
    return {'positions': engine.get_positions(user_id)}


@router.get("/orders")
async def get_orders(limit: Optional[int] = None,
                     user_id: str = Depends(get_user_id),
                     engine: TradeEngine = Depends(get_engine)):
    """Order history, most recent last"""
    orders = engine.get_orders(user_id)
    if limit is not None and limit > 0:
        orders = orders[-limit:]
    return {'orders': [o.to_dict() for o in orders], 'count': len(orders)}


@router.get("/performance")
async def get_performance(report: bool = False,
                          user_id: str = Depends(get_user_id),
                          engine: TradeEngine = Depends(get_engine)):
    """Performance analytics recomputed from the order log"""
    metrics = engine.get_performance(user_id)
    response = {'metrics': json_safe(metrics.to_dict())}
    if report:
        response['report'] = generate_report(metrics)
    return response


@router.get("/risk")
async def get_risk(user_id: str = Depends(get_user_id),
                   engine: TradeEngine = Depends(get_engine)):
    """Portfolio risk assessment and per-position exit recommendations"""
    ledger = engine.get_ledger(user_id)
    await engine.oracle.prefetch(list(ledger.get_all_positions()))
    assessment = engine.assess_portfolio(user_id)
    decisions = engine.evaluate_risk(user_id)
    return {
        'assessment': assessment.to_dict(),
        'recommendations': {symbol: d.to_dict() for symbol, d in decisions.items()},
        'parameters': engine.risk_manager.params.to_dict()
    }


@router.get("/batch")
async def get_batch(user_id: str = Depends(get_user_id),
                    engine: TradeEngine = Depends(get_engine)):
    """Queued batch orders"""
    processor = engine.batch_processor(user_id)
    return {
        'queue_size': processor.queue_size,
        'is_processing': processor.is_processing,
        'pending': [o.to_dict() for o in processor.pending()]
    }


@router.post("/batch")
async def submit_batch(request: BatchRequest,
                       user_id: str = Depends(get_user_id),
                       engine: TradeEngine = Depends(get_engine)):
    """Queue a batch of orders (all-or-nothing admission)"""
    processor = engine.batch_processor(user_id)
    queue_size = processor.submit([o.model_dump() for o in request.orders])
    return {'queued': len(request.orders), 'queue_size': queue_size}


@router.post("/batch/process")
async def process_batch(user_id: str = Depends(get_user_id),
                        engine: TradeEngine = Depends(get_engine)):
    """Execute queued orders sequentially"""
    return await engine.batch_processor(user_id).process()


@router.post("/batch/cancel")
async def cancel_batch(user_id: str = Depends(get_user_id),
                       engine: TradeEngine = Depends(get_engine)):
    """Request cancellation of a running batch"""
    processor = engine.batch_processor(user_id)
    was_processing = processor.is_processing
    processor.cancel()
    return {'cancel_requested': was_processing}
