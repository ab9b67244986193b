"""Availability query: free hours of a facility for a date and period.

Read-only. Used for display and by clients before calling admission; the
answer can be stale by the time a booking is attempted, so admission never
relies on it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.services.admission import get_active_facility
from pitchbook.services.slot_calendar import candidate_hours, free_hours


@dataclass
class Availability:
    facility_id: int
    date: date
    period: str
    available_slots: list[int] = field(default_factory=list)
    total_slots: int = 0

    @property
    def available_count(self) -> int:
        return len(self.available_slots)


async def available_slots(
    db: AsyncSession,
    facility_id: int,
    day: date,
    period: str = "all",
    now: datetime | None = None,
) -> Availability:
    """GetAvailability.

    ``total_slots`` counts the period's configured hours for the facility and
    ignores exclusions, so available_count / total_slots reads as load.
    Raises NotFound for a missing or inactive facility and InvalidRequest for
    an unknown period.
    """
    facility = await get_active_facility(db, facility_id)
    candidates = candidate_hours(facility, period)
    free = await free_hours(db, facility, day, period, now=now)
    return Availability(
        facility_id=facility.id,
        date=day,
        period=period,
        available_slots=free,
        total_slots=len(candidates),
    )
