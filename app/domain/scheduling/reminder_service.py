"""Appointment reminders - run by the worker every 30 minutes"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from ...document_store import DocumentStore
from ...shared.errors import SchedulingError
from .events import EventPublisher, NotificationType
from .repository import AppointmentFilter, AppointmentRepository, ProfessionalRepository
from .schemas import AppointmentStatus
from .service import EventEmitter, appointment_lock
from .time_calculator import appointment_start, local_today, utc_now

logger = logging.getLogger(__name__)

# (flag, hours before, window in minutes until start)
REMINDERS = (
    ("sent24h", 24, (23 * 60 + 30, 24 * 60 + 30)),
    ("sent1h", 1, (45, 75)),
)


class ReminderService:
    def __init__(
        self,
        store: DocumentStore,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock
        self.appointments = AppointmentRepository(store)
        self.events = EventEmitter(publisher, ProfessionalRepository(store))

    async def send_due_reminders(self) -> dict:
        """Emit 24h and 1h reminders to both parties, each at most once per appointment"""
        now = self.clock()
        today = local_today(now)
        listing = self.appointments.list_appointments(
            AppointmentFilter(
                date_from=today,
                # Near midnight the 24h window reaches into the day after tomorrow
                date_to=today + timedelta(days=2),
                statuses=[AppointmentStatus.CONFIRMED],
            )
        )
        results = {"checked": len(listing.appointments), "sent24h": 0, "sent1h": 0, "errors": 0}

        for candidate in listing.appointments:
            minutes_left = (appointment_start(candidate.date, candidate.time) - now).total_seconds() / 60
            for flag, hours, (low, high) in REMINDERS:
                if not low <= minutes_left <= high or candidate.reminders.get(flag):
                    continue
                try:
                    with self.store.transaction(appointment_lock(candidate.id)) as tx:
                        repository = AppointmentRepository(tx)
                        appointment = repository.require(candidate.id)
                        # Another run may have sent it since the listing was read
                        if appointment.reminders.get(flag):
                            continue
                        appointment = repository.update(
                            appointment,
                            {"reminders": {**appointment.reminders, flag: True, f"{flag}At": now.isoformat()}},
                        )
                except SchedulingError as e:
                    logger.error(f"❌ Reminder {flag} failed for appointment {candidate.id}: {e}")
                    results["errors"] += 1
                    continue

                await self.events.emit(
                    [
                        self.events.to_patient(NotificationType.APPOINTMENT_REMINDER, appointment, hoursUntil=hours),
                        self.events.to_professional(
                            NotificationType.APPOINTMENT_REMINDER, appointment, hoursUntil=hours
                        ),
                    ]
                )
                results[flag] += 1

        logger.info(f"⏰ Reminder run complete: {results}")
        return results
