"""
Order event journal - every significant order change is appended here and
mirrored to the structured log, giving a replayable trail per order.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional

import structlog

from schemas.order_definitions import OrderEvent, OrderEventType

logger = structlog.get_logger().bind(component="order_journal")


class IOrderJournal(ABC):
    """Append-only journal interface"""

    @abstractmethod
    async def append(self, event: OrderEvent) -> None:
        pass

    @abstractmethod
    async def get_by_order(self, order_id: str) -> List[OrderEvent]:
        pass


class InMemoryOrderJournal(IOrderJournal):
    """Append-only in-memory journal"""

    def __init__(self):
        self._events: List[OrderEvent] = []
        self._by_order: Dict[str, List[OrderEvent]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, event: OrderEvent) -> None:
        async with self._lock:
            self._events.append(event)
            if event.order_id:
                self._by_order[event.order_id].append(event)

    async def get_by_order(self, order_id: str) -> List[OrderEvent]:
        async with self._lock:
            return list(self._by_order.get(order_id, []))


async def record_event(
    journal: IOrderJournal,
    order_id: Optional[str],
    event_type: OrderEventType,
    payload: Optional[Dict[str, Any]] = None,
    severity: str = "INFO",
) -> OrderEvent:
    """
    Log an order event and append it to the journal.

    Journal failures are logged, never raised.
    """
    event = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        payload=payload or {},
        severity=severity,
    )

    log_method = getattr(logger, severity.lower(), logger.info)
    log_method(
        event_type.value,
        event_id=event.event_id[:8],
        order_id=order_id,
        **{k: v for k, v in event.payload.items() if k not in ("event_id", "order_id")}
    )

    try:
        await journal.append(event)
    except Exception as e:
        logger.error("journal_append_failed", event_type=event_type.value, order_id=order_id, error=str(e))

    return event
