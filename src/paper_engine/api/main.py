"""
Main FastAPI application for the paper trading engine

Wires the price oracle, risk manager, persistence store and trade engine
into one application and exposes the trading, backtesting and health
routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, get_settings
from ..core import TradeEngine
from ..database import PostgresStore, create_store
from ..exceptions import TradingError
from ..oracle import PriceOracle
from .backtest_api import router as backtest_router
from .health_api import router as health_router
from .trading_api import router as trading_router

logger = logging.getLogger(__name__)


ERROR_STATUS_CODES = {
    "validation_error": 422,
    "insufficient_funds": 400,
    "insufficient_position": 400,
    "risk_limit_exceeded": 403,
    "batch_in_progress": 409,
    "oracle_unavailable": 503,
}


def build_engine(settings: Settings) -> TradeEngine:
    """Construct the engine and its collaborators from settings"""
    oracle = PriceOracle(settings=settings)
    store = create_store(settings.database_url)
    return TradeEngine(oracle, store=store, settings=settings)


def create_app(engine: Optional[TradeEngine] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        engine: Pre-built trade engine (built from settings if omitted)
        settings: Service settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or (engine.settings if engine is not None else get_settings())
    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info("Paper Trading Engine API starting up...")
        if isinstance(engine.store, PostgresStore):
            engine.store.initialize()
        logger.info(f"Store: {type(engine.store).__name__}, live quotes: {settings.has_alpaca_credentials}")
        yield
        engine.store.close()
        logger.info("Paper Trading Engine API shutting down...")

    app = FastAPI(
        title="Paper Trading Engine API",
        description="Simulated order execution, risk controls, analytics and backtesting "
                    "against per-user virtual accounts.",
        version=__version__,
        lifespan=lifespan
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TradingError)
    async def trading_error_handler(request: Request, exc: TradingError):
        return JSONResponse(status_code=ERROR_STATUS_CODES.get(exc.kind, 400), content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        reasons = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        return JSONResponse(status_code=422, content={"kind": "validation_error", "reason": "; ".join(reasons)})

    app.include_router(health_router, prefix="/health", tags=["Health"])
    app.include_router(trading_router, prefix="/trading", tags=["Trading"])
    app.include_router(backtest_router, prefix="/backtest", tags=["Backtesting"])

    @app.get("/", tags=["Root"])
    async def root():
        """Welcome endpoint"""
        return {
            "message": "Paper Trading Engine API",
            "version": __version__,
            "status": "active"
        }

    return app


def main():
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=8000, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
