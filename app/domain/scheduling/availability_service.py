"""Availability service - weekly templates to bookable slots"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from .conflict_checker import ConflictChecker
from .repository import ProfessionalRepository
from .schemas import AvailableSlot, AvailableSlotsResponse, DayAvailability
from .time_calculator import format_hhmm, local_minutes, local_today, utc_now

logger = logging.getLogger(__name__)


def generate_slots(day: DayAvailability, duration_minutes: int, buffer_minutes: int) -> list[int]:
    """
    Candidate start times (minutes since midnight) for one day.

    Every range is walked independently with a stride of duration + buffer; a
    slot is emitted only if it ends inside its range. Overlapping ranges give
    duplicate candidates, which callers de-duplicate.
    """
    if duration_minutes <= 0:
        raise ValueError("Session duration must be positive")
    if buffer_minutes < 0:
        raise ValueError("Buffer cannot be negative")
    if not day.enabled:
        return []

    slots = []
    for time_range in sorted(day.ranges, key=lambda r: (r.start, r.end)):
        if time_range.start >= time_range.end:
            continue
        cursor = time_range.start
        while cursor + duration_minutes <= time_range.end:
            slots.append(cursor)
            cursor += duration_minutes + buffer_minutes
    return slots


class AvailabilityService:
    """Slots for a professional's day, flagged against existing bookings and the clock"""

    def __init__(
        self,
        professionals: ProfessionalRepository,
        conflicts: ConflictChecker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.professionals = professionals
        self.conflicts = conflicts
        self.clock = clock

    def get_available_slots(
        self, professional_id: str, day: date, service_id: Optional[str] = None
    ) -> AvailableSlotsResponse:
        profile = self.professionals.require_professional(professional_id)
        duration = profile.session_duration
        if service_id:
            duration = self.professionals.require_service(professional_id, service_id).duration_minutes

        candidates = sorted(
            set(generate_slots(profile.availability.for_date(day), duration, profile.buffer_minutes))
        )

        now = self.clock()
        today = local_today(now)
        now_minutes = local_minutes(now)
        busy = self.conflicts.busy_intervals(professional_id, day)

        slots = []
        for start in candidates:
            past = day < today or (day == today and start <= now_minutes)
            booked = any(
                self.conflicts.overlaps(start, start + duration, busy_start, busy_end)
                for busy_start, busy_end in busy
            )
            slots.append(
                AvailableSlot(
                    time=format_hhmm(start),
                    available=not (past or booked),
                    booked=booked,
                    past=past,
                )
            )

        logger.info(
            f"📅 {len(slots)} slots for professional {professional_id} on {day} "
            f"({sum(1 for s in slots if s.available)} available)"
        )
        return AvailableSlotsResponse(
            professionalId=professional_id, date=day, durationMinutes=duration, slots=slots
        )

    def is_bookable_slot(self, professional_id: str, day: date, time_str: str, duration: int) -> bool:
        """Whether ``time_str`` is one of the generated starts for that day"""
        profile = self.professionals.require_professional(professional_id)
        candidates = generate_slots(profile.availability.for_date(day), duration, profile.buffer_minutes)
        return time_str in {format_hhmm(start) for start in candidates}
