"""Domain events published by the booking engine.

Events are published only after the transaction that produced them has
committed. Delivery is fire-and-forget: coroutine subscribers run as background
tasks, plain callables run inline, and a failing subscriber is logged without
affecting the engine or the other subscribers.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
CREDIT_ISSUED = "credit.issued"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


Handler = Callable[[DomainEvent], Any]

_subscribers: dict[str, list[Handler]] = defaultdict(list)
_pending: set[asyncio.Task] = set()


def subscribe(name: str, handler: Handler) -> None:
    _subscribers[name].append(handler)


def unsubscribe(name: str, handler: Handler) -> None:
    if handler in _subscribers.get(name, []):
        _subscribers[name].remove(handler)


def _log_task_failure(task: asyncio.Task) -> None:
    _pending.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Event subscriber failed", exc_info=task.exception())


def publish(event: DomainEvent) -> None:
    """Hand the event to every subscriber without waiting for delivery."""
    handlers = list(_subscribers.get(event.name, []))
    logger.debug("Publishing %s to %d subscriber(s)", event.name, len(handlers))

    for handler in handlers:
        try:
            if inspect.iscoroutinefunction(handler):
                task = asyncio.get_running_loop().create_task(handler(event))
                _pending.add(task)
                task.add_done_callback(_log_task_failure)
            else:
                handler(event)
        except Exception:
            logger.exception("Event subscriber %r failed for %s", handler, event.name)


async def drain() -> None:
    """Wait for in-flight subscriber tasks. Used at shutdown and in tests."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


def booking_payload(booking) -> dict[str, Any]:
    return {
        "booking_id": booking.id,
        "facility_id": booking.facility_id,
        "user_id": booking.user_id,
        "date": booking.booking_date.isoformat(),
        "start_hour": booking.start_hour,
        "status": booking.status.value,
        "total_price": booking.total_price,
        "deposit_paid": booking.deposit_paid,
        "remaining_balance": booking.remaining_balance,
        "refund_amount": booking.refund_amount,
    }


def credit_payload(credit) -> dict[str, Any]:
    return {
        "credit_id": credit.id,
        "code": credit.code,
        "beneficiary_id": credit.beneficiary_id,
        "value": credit.value,
        "expires_at": credit.expires_at.isoformat(),
        "source_booking_id": credit.source_booking_id,
    }
