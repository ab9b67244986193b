"""Celery worker configuration and the booking lifecycle sweeps.

Start with: celery -A pitchbook.worker worker --beat
"""

import asyncio

from celery import Celery

from pitchbook.core.config import settings
from pitchbook.core.database import engine
from pitchbook.services import lifecycle

SWEEP_INTERVAL_SECONDS = 300

celery_app = Celery(
    "pitchbook",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "expire-pending-bookings": {
            "task": "pitchbook.expire_pending_bookings",
            "schedule": SWEEP_INTERVAL_SECONDS,
        },
        "complete-past-bookings": {
            "task": "pitchbook.complete_past_bookings",
            "schedule": SWEEP_INTERVAL_SECONDS,
        },
    },
)


async def _sweep(job) -> list[int]:
    # Each asyncio.run gets a fresh loop; pooled connections from a previous loop are unusable
    try:
        return await job()
    finally:
        await engine.dispose()


@celery_app.task(name="pitchbook.expire_pending_bookings")
def expire_pending_bookings() -> list[int]:
    return asyncio.run(_sweep(lifecycle.expire_pending_bookings))


@celery_app.task(name="pitchbook.complete_past_bookings")
def complete_past_bookings() -> list[int]:
    return asyncio.run(_sweep(lifecycle.complete_past_bookings))
