"""Video room controller - Jitsi session gating for confirmed appointments"""

import base64
import logging
import math
import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from ...config import JITSI_DOMAIN
from ...document_store import DocumentStore
from ...shared.errors import PolicyViolation
from .events import EventPublisher, NotificationType
from .repository import AppointmentRepository, ProfessionalRepository
from .schemas import Appointment, AppointmentStatus, Caller, CallerRole, JoinInfo, RoomStatus
from .service import (
    EventEmitter,
    SchedulingPolicy,
    appointment_lock,
    authorize_party,
    authorize_professional,
    ensure_not_terminal,
)
from .time_calculator import appointment_start, utc_now

logger = logging.getLogger(__name__)

ACTIVE_ROOM_STATUSES = (RoomStatus.OPEN, RoomStatus.IN_PROGRESS)


def room_name_for(appointment_id: str) -> str:
    """Stable, unguessable-enough room name: SW- plus 24 alphanumerics"""
    encoded = base64.b64encode(f"smartwell-{appointment_id}".encode()).decode()
    return "SW-" + re.sub(r"[^A-Za-z0-9]", "", encoded)[:24]


def room_url(room_name: str) -> str:
    return f"https://{JITSI_DOMAIN}/{room_name}"


class RoomController:
    """
    Waiting -> Open -> InProgress -> Ended, scoped to one confirmed appointment.

    Only the professional opens and ends the room. A patient may join only
    while the room is active and the clock is inside the session window:
    from ``room_open_lead_minutes`` before the start until
    ``duration + room_close_grace_minutes`` after it.
    """

    def __init__(
        self,
        store: DocumentStore,
        publisher: EventPublisher,
        policy: Optional[SchedulingPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or SchedulingPolicy()
        self.clock = clock
        self.events = EventEmitter(publisher, ProfessionalRepository(store))

    def window(self, appointment: Appointment) -> tuple[datetime, datetime]:
        start = appointment_start(appointment.date, appointment.time)
        opens = start - timedelta(minutes=self.policy.room_open_lead_minutes)
        closes = start + timedelta(
            minutes=appointment.duration_minutes + self.policy.room_close_grace_minutes
        )
        return opens, closes

    def _ensure_in_window(self, appointment: Appointment, now: datetime) -> None:
        opens, closes = self.window(appointment)
        if now < opens:
            minutes_left = math.ceil((opens - now).total_seconds() / 60)
            raise PolicyViolation(
                f"The session room opens {self.policy.room_open_lead_minutes} minutes before the start",
                {"minutesUntilOpen": minutes_left},
            )
        if now > closes:
            raise PolicyViolation("The session window has closed")

    @staticmethod
    def _join_info(appointment: Appointment, party: CallerRole) -> JoinInfo:
        name = appointment.meeting_room_id or room_name_for(appointment.id)
        return JoinInfo(
            roomName=name,
            url=room_url(name),
            isModerator=party == CallerRole.PROFESSIONAL,
            roomStatus=appointment.room_status,
        )

    async def open_room(self, caller: Caller, appointment_id: str) -> JoinInfo:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            authorize_professional(appointment, caller)
            if appointment.status != AppointmentStatus.CONFIRMED:
                raise PolicyViolation(
                    "Only confirmed appointments have a session room",
                    {"status": appointment.status.value},
                )
            if appointment.room_status != RoomStatus.WAITING:
                raise PolicyViolation(
                    f"The room is already {appointment.room_status.value}",
                    {"roomStatus": appointment.room_status.value},
                )
            now = self.clock()
            self._ensure_in_window(appointment, now)

            updated = repository.update(
                appointment,
                {
                    "room_status": RoomStatus.OPEN,
                    "meeting_room_id": room_name_for(appointment.id),
                    "professional_joined_at": now,
                    "updated_at": now,
                },
            )

        info = self._join_info(updated, CallerRole.PROFESSIONAL)
        logger.info(f"🎥 Room {info.roomName} opened for appointment {appointment_id}")
        await self.events.emit(
            [self.events.to_patient(NotificationType.ROOM_OPENED, updated, roomUrl=info.url)]
        )
        return info

    async def join_meeting(self, caller: Caller, appointment_id: str) -> JoinInfo:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            party = authorize_party(appointment, caller)
            ensure_not_terminal(appointment)
            if appointment.room_status not in ACTIVE_ROOM_STATUSES:
                if appointment.room_status == RoomStatus.ENDED:
                    raise PolicyViolation("This session has ended")
                raise PolicyViolation("The professional has not opened the room yet")

            now = self.clock()
            if party == CallerRole.PATIENT:
                self._ensure_in_window(appointment, now)

            joined_field = (
                "professional_joined_at" if party == CallerRole.PROFESSIONAL else "patient_joined_at"
            )
            changes = {}
            if getattr(appointment, joined_field) is None:
                changes[joined_field] = now
            professional_in = appointment.professional_joined_at or changes.get("professional_joined_at")
            patient_in = appointment.patient_joined_at or changes.get("patient_joined_at")
            if appointment.room_status == RoomStatus.OPEN and professional_in and patient_in:
                changes["room_status"] = RoomStatus.IN_PROGRESS

            if changes:
                changes["updated_at"] = now
                appointment = repository.update(appointment, changes)

        if changes.get("room_status") == RoomStatus.IN_PROGRESS:
            logger.info(f"🎥 Session for appointment {appointment_id} in progress")
        return self._join_info(appointment, party)

    async def end_room(self, caller: Caller, appointment_id: str) -> Appointment:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            authorize_professional(appointment, caller)
            ensure_not_terminal(appointment)
            if appointment.room_status not in ACTIVE_ROOM_STATUSES:
                raise PolicyViolation(
                    "Only an open room can be ended",
                    {"roomStatus": appointment.room_status.value},
                )

            updated = repository.update(
                appointment,
                {
                    "room_status": RoomStatus.ENDED,
                    "status": AppointmentStatus.COMPLETED,
                    "updated_at": self.clock(),
                },
            )

        logger.info(f"🏁 Session for appointment {appointment_id} ended, appointment completed")
        await self.events.emit([self.events.to_patient(NotificationType.APPOINTMENT_COMPLETED, updated)])
        return updated
