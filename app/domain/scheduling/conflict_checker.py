"""Conflict checker - is a candidate slot already taken on a professional's agenda"""

import logging
from datetime import date
from typing import Optional

from .repository import AppointmentFilter, AppointmentRepository
from .schemas import BLOCKING_STATUSES
from .time_calculator import intervals_overlap, parse_hhmm

logger = logging.getLogger(__name__)


class ConflictChecker:
    """
    Interval-overlap check against every non-terminal appointment of the
    professional on the same date, across both sources.

    Reads are strict: if either source cannot be read the check fails with
    UpstreamUnavailable instead of reporting a possibly-taken slot as free.
    """

    overlaps = staticmethod(intervals_overlap)

    def __init__(self, repository: AppointmentRepository):
        self.repository = repository

    def busy_intervals(
        self, professional_id: str, day: date, exclude_appointment_id: Optional[str] = None
    ) -> list[tuple[int, int]]:
        listing = self.repository.list_appointments(
            AppointmentFilter(
                professional_id=professional_id,
                date_from=day,
                date_to=day,
                statuses=sorted(BLOCKING_STATUSES, key=lambda s: s.value),
            ),
            strict=True,
        )
        busy = []
        for appointment in listing.appointments:
            if appointment.id == exclude_appointment_id:
                continue
            start = parse_hhmm(appointment.time)
            busy.append((start, start + appointment.duration_minutes))
        return busy

    def is_slot_free(
        self,
        professional_id: str,
        day: date,
        time_str: str,
        duration_minutes: Optional[int] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> bool:
        """
        True when nothing blocking overlaps [time, time + duration).

        Without a duration the candidate is a single instant, which still
        collides with any appointment running at that time.
        """
        start = parse_hhmm(time_str)
        end = start + (duration_minutes or 0)
        for busy_start, busy_end in self.busy_intervals(professional_id, day, exclude_appointment_id):
            if self.overlaps(start, end, busy_start, busy_end):
                logger.info(
                    f"⛔ Slot {day} {time_str} for professional {professional_id} overlaps "
                    f"an existing appointment"
                )
                return False
        return True
