"""
Batch order processor tests

Validates all-or-nothing admission, per-order error isolation, the
single-runner rule and cooperative cancellation.
"""

import asyncio

import pytest

from paper_engine.core import BatchOrder
from paper_engine.exceptions import BatchInProgress, ValidationError
from paper_engine.models import OrderSide

from conftest import make_engine, make_settings


def test_invalid_order_rejects_whole_submission(engine):
    processor = engine.batch_processor("alice")
    with pytest.raises(ValidationError) as exc_info:
        processor.submit([
            {"symbol": "AAPL", "side": "buy", "quantity": 10},
            {"symbol": "MSFT", "side": "buy", "quantity": 0},
        ])
    assert "order 1" in exc_info.value.reason
    assert processor.queue_size == 0

    result = asyncio.run(processor.process())
    assert result["processed"] == 0
    assert engine.get_orders("alice") == []


@pytest.mark.parametrize("order", [
    {"symbol": "", "side": "buy", "quantity": 1},
    {"symbol": "AAPL", "side": "hold", "quantity": 1},
    {"symbol": "AAPL", "side": "sell", "quantity": 1, "price": -3},
    "AAPL",
])
def test_malformed_orders(engine, order):
    with pytest.raises(ValidationError):
        engine.batch_processor("alice").submit([order])


def test_empty_and_oversized_batches():
    engine = make_engine(make_settings(max_batch_size=2))
    processor = engine.batch_processor("alice")
    with pytest.raises(ValidationError):
        processor.submit([])

    order = {"symbol": "AAPL", "side": "buy", "quantity": 1}
    processor.submit([order, order])
    with pytest.raises(ValidationError):
        processor.submit([order])
    assert processor.queue_size == 2


def test_failure_is_isolated_after_admission():
    engine = make_engine(make_settings(initial_capital=20000.0, max_position_size=1.0))
    processor = engine.batch_processor("alice")
    processor.submit([
        {"symbol": "AAPL", "side": "buy", "quantity": 100},               # 15015 total
        {"symbol": "MSFT", "side": "buy", "quantity": 100, "price": 60},  # 6006 > remaining cash
        {"symbol": "TSLA", "side": "sell", "quantity": 1},                # no position
        BatchOrder("AAPL", OrderSide.SELL, 10),
    ])

    result = asyncio.run(processor.process())

    assert result["processed"] == 4
    assert result["succeeded"] == 2
    assert result["failed"] == 2
    assert result["cancelled"] is False
    assert result["remaining"] == 0

    statuses = [d["status"] for d in result["details"]]
    assert statuses == ["success", "failed", "failed", "success"]
    assert result["details"][1]["error"]["kind"] == "insufficient_funds"
    assert result["details"][2]["error"]["kind"] == "insufficient_position"
    assert result["details"][0]["order"]["price"] == 150.0

    ledger = engine.get_ledger("alice")
    assert ledger.get_position("AAPL").quantity == 90
    assert len(ledger.orders) == 2
    assert processor.queue_size == 0


def test_concurrent_process_is_rejected():
    engine = make_engine(make_settings(batch_processing_delay_seconds=0.05))
    processor = engine.batch_processor("alice")
    order = {"symbol": "AAPL", "side": "buy", "quantity": 1}
    processor.submit([order, order, order])

    async def scenario():
        task = asyncio.create_task(processor.process())
        while not processor.is_processing:
            await asyncio.sleep(0)
        with pytest.raises(BatchInProgress):
            await processor.process()
        return await task

    result = asyncio.run(scenario())
    assert result["succeeded"] == 3
    assert not processor.is_processing


def test_cancellation_keeps_executed_orders(engine):
    processor = engine.batch_processor("alice")
    order = {"symbol": "AAPL", "side": "buy", "quantity": 1}
    processor.submit([order, order, order])

    execute_buy = engine.execute_buy

    def buy_then_cancel(*args, **kwargs):
        executed = execute_buy(*args, **kwargs)
        processor.cancel()
        return executed

    engine.execute_buy = buy_then_cancel
    result = asyncio.run(processor.process())

    assert result["cancelled"] is True
    assert result["processed"] == 1
    assert result["remaining"] == 2
    assert len(engine.get_orders("alice")) == 1

    # Remaining orders run on the next pass
    engine.execute_buy = execute_buy
    result = asyncio.run(processor.process())
    assert result["cancelled"] is False
    assert result["succeeded"] == 2
    assert len(engine.get_orders("alice")) == 3


def test_cancel_when_idle_is_a_no_op(engine):
    processor = engine.batch_processor("alice")
    processor.cancel()
    processor.submit([{"symbol": "AAPL", "side": "buy", "quantity": 1}])
    result = asyncio.run(processor.process())
    assert result["cancelled"] is False
    assert result["succeeded"] == 1


def test_processors_are_per_account(engine):
    assert engine.batch_processor("alice") is engine.batch_processor("alice")
    assert engine.batch_processor("alice") is not engine.batch_processor("bob")
