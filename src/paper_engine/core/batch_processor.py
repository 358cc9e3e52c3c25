"""
Batch Order Processor

Queues orders for one account and executes them sequentially:
- All-or-nothing admission: a submission is validated as a whole
- One order at a time through the trade engine, with a small delay between
  orders
- Per-order error isolation; failures are reported, never raised
- At most one process() run per account; cooperative cancellation between
  orders without rolling back executed ones
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from ..exceptions import BatchInProgress, TradingError, ValidationError
from ..models import OrderSide
from .ledger import validate_order_fields

if TYPE_CHECKING:
    from .trade_engine import TradeEngine

logger = logging.getLogger(__name__)


@dataclass
class BatchOrder:
    """Queued order request"""
    symbol: str
    side: OrderSide
    quantity: float
    price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BatchOrder':
        if not isinstance(data, dict):
            raise ValidationError(f"order must be a mapping, got {type(data).__name__}")
        side = data.get('side')
        if not isinstance(side, OrderSide):
            try:
                side = OrderSide(str(side).lower())
            except ValueError:
                raise ValidationError(f"side must be 'buy' or 'sell', got {side!r}")
        return cls(
            symbol=data.get('symbol'),
            side=side,
            quantity=data.get('quantity'),
            price=data.get('price')
        )

    def validate(self) -> None:
        if not isinstance(self.side, OrderSide):
            raise ValidationError(f"invalid side {self.side!r}")
        validate_order_fields(self.symbol, self.quantity, self.price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'side': self.side.value,
            'quantity': self.quantity,
            'price': self.price
        }


class BatchOrderProcessor:
    """Sequential batch execution for a single account"""

    def __init__(self, engine: 'TradeEngine', user_id: str,
                 max_batch_size: int = 10, processing_delay: float = 0.1):
        """
        Initialize batch processor

        Args:
            engine: Trade engine that executes each order
            user_id: Account the batch trades for
            max_batch_size: Maximum number of queued orders
            processing_delay: Seconds to wait between orders
        """
        self.engine = engine
        self.user_id = user_id
        self.max_batch_size = max_batch_size
        self.processing_delay = processing_delay

        self._queue: List[BatchOrder] = []
        self._queue_lock = threading.Lock()
        self._processing_lock = threading.Lock()
        self._cancel_requested = threading.Event()

    @property
    def queue_size(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing_lock.locked()

    def pending(self) -> List[BatchOrder]:
        with self._queue_lock:
            return list(self._queue)

    def submit(self, orders: Iterable[Union[BatchOrder, Dict[str, Any]]]) -> int:
        """
        Validate every order and queue them all, or none

        Returns:
            Queue size after submission

        Raises:
            ValidationError: Any order is malformed, or the queue would
                exceed the maximum batch size
        """
        batch = []
        for index, order in enumerate(orders):
            if not isinstance(order, BatchOrder):
                try:
                    order = BatchOrder.from_dict(order)
                except ValidationError as e:
                    raise ValidationError(f"order {index}: {e.reason}")
            try:
                order.validate()
            except ValidationError as e:
                raise ValidationError(f"order {index}: {e.reason}")
            batch.append(order)

        if not batch:
            raise ValidationError("batch must contain at least one order")

        with self._queue_lock:
            if len(self._queue) + len(batch) > self.max_batch_size:
                raise ValidationError(
                    f"batch size {len(self._queue) + len(batch)} exceeds maximum {self.max_batch_size}"
                )
            self._queue.extend(batch)
            size = len(self._queue)

        logger.info(f"Queued {len(batch)} orders for {self.user_id} ({size} pending)")
        return size

    def cancel(self) -> None:
        """Request the running process() to stop before its next order"""
        if self.is_processing:
            logger.info(f"Cancellation requested for batch of {self.user_id}")
            self._cancel_requested.set()

    async def process(self) -> Dict[str, Any]:
        """
        Drain the queue, executing orders one at a time

        Returns:
            Summary with processed/succeeded/failed counts, per-order details,
            whether the run was cancelled and how many orders remain queued

        Raises:
            BatchInProgress: Another process() is running for this account
        """
        if not self._processing_lock.acquire(blocking=False):
            raise BatchInProgress("batch already processing for this account")

        try:
            self._cancel_requested.clear()
            with self._queue_lock:
                symbols = {o.symbol for o in self._queue if o.price is None}
            if symbols:
                await self.engine.oracle.prefetch(symbols)

            logger.info(f"Processing batch for {self.user_id} ({self.queue_size} orders)")
            details = []
            succeeded = failed = 0
            cancelled = False

            while True:
                if self._cancel_requested.is_set():
                    cancelled = True
                    break

                with self._queue_lock:
                    if not self._queue:
                        break
                    order = self._queue.pop(0)

                detail = self._execute_one(order)
                details.append(detail)
                if detail['status'] == 'success':
                    succeeded += 1
                else:
                    failed += 1

                if self.queue_size and self.processing_delay > 0:
                    await asyncio.sleep(self.processing_delay)

            remaining = self.queue_size
            if cancelled:
                logger.info(f"Batch for {self.user_id} cancelled after {len(details)} orders, {remaining} left queued")
            else:
                logger.info(f"Batch for {self.user_id} finished: {succeeded} succeeded, {failed} failed")

            return {
                'processed': len(details),
                'succeeded': succeeded,
                'failed': failed,
                'details': details,
                'cancelled': cancelled,
                'remaining': remaining
            }
        finally:
            self._cancel_requested.clear()
            self._processing_lock.release()

    def _execute_one(self, order: BatchOrder) -> Dict[str, Any]:
        detail = order.to_dict()
        try:
            if order.side == OrderSide.BUY:
                executed = self.engine.execute_buy(self.user_id, order.symbol, order.quantity, order.price)
            else:
                executed = self.engine.execute_sell(self.user_id, order.symbol, order.quantity, order.price)
        except TradingError as e:
            detail.update({'status': 'failed', 'error': e.to_dict(), 'order': None})
            return detail

        detail.update({'status': 'success', 'error': None, 'order': executed.to_dict()})
        return detail
