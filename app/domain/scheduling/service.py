"""Appointment lifecycle service - booking, status machine, cancellation, reschedule, payments"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from ...config import (
    CANCELLATION_NOTICE_HOURS,
    PAYMENT_REJECTION_THRESHOLD,
    ROOM_CLOSE_GRACE_MINUTES,
    ROOM_OPEN_LEAD_MINUTES,
)
from ...document_store import DocumentStore
from ...shared.errors import Conflict, PolicyViolation, Unauthorized
from .availability_service import AvailabilityService
from .conflict_checker import ConflictChecker
from .events import DomainEvent, EventPublisher, NotificationType
from .repository import (
    AppointmentFilter,
    AppointmentListing,
    AppointmentRepository,
    ProfessionalRepository,
)
from .schemas import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    AppointmentView,
    Caller,
    CallerRole,
    CancellationPolicy,
    CancelledBy,
    CreateAppointmentRequest,
    PaymentAction,
    PaymentStatus,
    RescheduleEntry,
)
from .time_calculator import appointment_start, utc_now

logger = logging.getLogger(__name__)

# Legal status-change graph; terminal statuses have no entry
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.PENDING_PAYMENT: frozenset({AppointmentStatus.PAYMENT_SUBMITTED}),
    AppointmentStatus.PAYMENT_SUBMITTED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.PAYMENT_REJECTED}
    ),
    AppointmentStatus.PAYMENT_REJECTED: frozenset(
        {AppointmentStatus.PENDING_PAYMENT, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
}

NOTIFY_PATIENT_ON = {
    AppointmentStatus.CONFIRMED: NotificationType.APPOINTMENT_CONFIRMED,
    AppointmentStatus.CANCELLED: NotificationType.APPOINTMENT_CANCELLED,
}


@dataclass(frozen=True)
class SchedulingPolicy:
    """Business thresholds, built from config by default"""

    cancellation_notice_hours: int = CANCELLATION_NOTICE_HOURS
    payment_rejection_threshold: int = PAYMENT_REJECTION_THRESHOLD
    room_open_lead_minutes: int = ROOM_OPEN_LEAD_MINUTES
    room_close_grace_minutes: int = ROOM_CLOSE_GRACE_MINUTES


def professional_lock(professional_id: str) -> str:
    return f"professional:{professional_id}"


def appointment_lock(appointment_id: str) -> str:
    return f"appointment:{appointment_id}"


def authorize_party(appointment: Appointment, caller: Caller) -> CallerRole:
    """Side the caller acts on for this appointment, matched by uid whatever their account role"""
    if caller.uid == appointment.professional_id:
        return CallerRole.PROFESSIONAL
    if appointment.patient_id and caller.uid == appointment.patient_id:
        return CallerRole.PATIENT
    raise Unauthorized("You are not a party to this appointment")


def authorize_professional(appointment: Appointment, caller: Caller) -> None:
    if caller.role != CallerRole.PROFESSIONAL or caller.uid != appointment.professional_id:
        raise Unauthorized("Only the appointment's professional can do this")


def ensure_not_terminal(appointment: Appointment) -> None:
    if appointment.is_terminal:
        raise PolicyViolation(
            f"Appointment is already {appointment.status.value}",
            {"status": appointment.status.value},
        )


class EventEmitter:
    """Builds recipient-addressed events and hands them to the publisher after commit"""

    def __init__(self, publisher: EventPublisher, professionals: ProfessionalRepository):
        self.publisher = publisher
        self.professionals = professionals

    @staticmethod
    def _payload(appointment: Appointment, **extra) -> dict:
        return {
            "appointmentDate": appointment.date.isoformat(),
            "appointmentTime": appointment.time,
            "professionalId": appointment.professional_id,
            "professionalName": appointment.professional_name,
            "patientName": appointment.patient_name,
            "serviceName": appointment.service_name,
            **extra,
        }

    def to_patient(self, kind: NotificationType, appointment: Appointment, **extra) -> Optional[DomainEvent]:
        if not appointment.patient_id and not appointment.patient_email:
            return None
        return DomainEvent(
            type=kind,
            recipient_id=appointment.patient_id,
            recipient_email=appointment.patient_email,
            recipient_name=appointment.patient_name,
            appointment_id=appointment.id,
            payload=self._payload(appointment, **extra),
        )

    def to_professional(self, kind: NotificationType, appointment: Appointment, **extra) -> DomainEvent:
        profile = self.professionals.get_professional(appointment.professional_id)
        return DomainEvent(
            type=kind,
            recipient_id=appointment.professional_id,
            recipient_email=profile.email if profile else None,
            recipient_name=appointment.professional_name,
            appointment_id=appointment.id,
            payload=self._payload(appointment, **extra),
        )

    def to_counterparty(
        self, kind: NotificationType, appointment: Appointment, actor: CallerRole, **extra
    ) -> Optional[DomainEvent]:
        if actor == CallerRole.PATIENT:
            return self.to_professional(kind, appointment, **extra)
        return self.to_patient(kind, appointment, **extra)

    async def emit(self, events: Iterable[Optional[DomainEvent]]) -> None:
        for event in events:
            if event is None:
                continue
            try:
                await self.publisher.publish(event)
            except Exception as e:
                logger.error(f"❌ Notification {event.type.value} for {event.appointment_id} dropped: {e}")


class AppointmentLifecycleService:
    """
    Owns the appointment state machine.

    Every mutation runs inside ``store.transaction`` with the relevant lock
    keys; notifications are emitted only after the transaction commits and
    never affect its outcome. ``clock`` is injected so policy windows are
    deterministic under test.
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
        self.appointments = AppointmentRepository(store)
        self.professionals = ProfessionalRepository(store)
        self.conflicts = ConflictChecker(self.appointments)
        self.availability = AvailabilityService(self.professionals, self.conflicts, clock)
        self.events = EventEmitter(publisher, self.professionals)

    # ========================================================================
    # READS
    # ========================================================================

    def get_appointment(self, caller: Caller, appointment_id: str) -> Appointment:
        appointment = self.appointments.require(appointment_id)
        authorize_party(appointment, caller)
        return appointment

    def list_for_caller(
        self,
        caller: Caller,
        view: AppointmentView = AppointmentView.UPCOMING,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AppointmentListing:
        flt = AppointmentFilter(date_from=date_from, date_to=date_to)
        if caller.role == CallerRole.PROFESSIONAL:
            flt.professional_id = caller.uid
        else:
            flt.patient_id = caller.uid
        return self.appointments.list_appointments(flt, view=view)

    def check_cancellation_policy(self, appointment: Appointment) -> CancellationPolicy:
        """canCancel iff the session has not started and starts at least the notice period from now"""
        now = self.clock()
        remaining = appointment_start(appointment.date, appointment.time) - now
        remaining_hours = remaining.total_seconds() / 3600
        hours_floor = max(0, int(remaining.total_seconds() // 3600))

        if remaining.total_seconds() <= 0:
            return CancellationPolicy(
                canCancel=False, hoursBeforeSession=hours_floor, reason="The session has already started or passed"
            )
        if remaining_hours < self.policy.cancellation_notice_hours:
            return CancellationPolicy(
                canCancel=False,
                hoursBeforeSession=hours_floor,
                reason=(
                    f"Appointments can only be cancelled at least "
                    f"{self.policy.cancellation_notice_hours} hours in advance"
                ),
            )
        return CancellationPolicy(canCancel=True, hoursBeforeSession=hours_floor)

    # ========================================================================
    # CREATE
    # ========================================================================

    async def create_appointment(self, caller: Caller, data: CreateAppointmentRequest) -> Appointment:
        profile = self.professionals.require_professional(data.professionalId)
        service = (
            self.professionals.require_service(profile.id, data.serviceId) if data.serviceId else None
        )

        if caller.role == CallerRole.PATIENT:
            source = AppointmentSource.PATIENT_CREATED
            duration = service.duration_minutes if service else profile.session_duration
            price = service.price_minor_units if service else profile.session_price_minor_units
            deposit_percent = profile.deposit_percent
            patient = {
                "patient_id": caller.uid,
                "patient_name": data.patientName or caller.name or "",
                "patient_email": caller.email,
            }

            if appointment_start(data.date, data.time) <= self.clock():
                raise PolicyViolation("Appointments must be booked in the future")
            if not self.availability.is_bookable_slot(profile.id, data.date, data.time, duration):
                raise PolicyViolation(
                    "The requested time is not one of the professional's available slots",
                    {"date": data.date.isoformat(), "time": data.time},
                )
        else:
            if caller.uid != profile.id:
                raise Unauthorized("Professionals can only add appointments to their own agenda")
            source = AppointmentSource.PROFESSIONAL_CREATED
            duration = data.durationMinutes or (service.duration_minutes if service else profile.session_duration)
            price = data.priceMinorUnits
            if price is None:
                price = service.price_minor_units if service else profile.session_price_minor_units
            deposit_percent = data.depositPercent if data.depositPercent is not None else 0
            patient = {
                "patient_id": data.patientId,
                "patient_name": data.patientName or "",
                "patient_email": data.patientEmail,
            }

        deposit_required = (price * deposit_percent) // 100 > 0
        now = self.clock()
        values = {
            **patient,
            "professional_id": profile.id,
            "professional_name": profile.name,
            "date": data.date,
            "time": data.time,
            "duration_minutes": duration,
            "service_id": service.id if service else None,
            "service_name": service.name if service else None,
            "price_minor_units": price,
            "deposit_percent": deposit_percent,
            "payment_status": PaymentStatus.PENDING if deposit_required else PaymentStatus.NOT_REQUIRED,
            "payment_rejection_count": 0,
            "status": AppointmentStatus.PENDING_PAYMENT if deposit_required else AppointmentStatus.PENDING,
            "room_status": "waiting",
            "reschedule_history": [],
            "created_at": now,
            "updated_at": now,
        }

        with self.store.transaction(professional_lock(profile.id)) as tx:
            repository = AppointmentRepository(tx)
            if not ConflictChecker(repository).is_slot_free(profile.id, data.date, data.time, duration):
                raise Conflict(
                    "This time slot is no longer available, please pick another",
                    {"date": data.date.isoformat(), "time": data.time},
                )
            appointment = repository.create(source, values)

        logger.info(
            f"✅ Appointment {appointment.id} created ({source.value}) for professional "
            f"{profile.id} on {appointment.date} {appointment.time} - status {appointment.status.value}"
        )
        await self.events.emit(
            [self.events.to_counterparty(NotificationType.APPOINTMENT_BOOKED, appointment, caller.role)]
        )
        return appointment

    # ========================================================================
    # STATUS MACHINE
    # ========================================================================

    async def change_status(
        self, caller: Caller, appointment_id: str, new_status: AppointmentStatus
    ) -> Appointment:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            authorize_professional(appointment, caller)
            ensure_not_terminal(appointment)

            current = appointment.status
            if new_status == current or new_status not in TRANSITIONS.get(current, frozenset()):
                raise PolicyViolation(
                    f"Cannot change status from {current.value} to {new_status.value}",
                    {"from": current.value, "to": new_status.value},
                )
            if current == AppointmentStatus.PENDING_PAYMENT:
                raise PolicyViolation("Payment is submitted by uploading a receipt")
            if current == AppointmentStatus.PAYMENT_SUBMITTED:
                raise PolicyViolation("Submitted payments are approved or rejected through payment review")
            if (
                current == AppointmentStatus.PAYMENT_REJECTED
                and new_status == AppointmentStatus.CANCELLED
                and appointment.payment_rejection_count < self.policy.payment_rejection_threshold
            ):
                raise PolicyViolation(
                    "The patient can still retry the payment",
                    {"paymentRejectionCount": appointment.payment_rejection_count},
                )

            now = self.clock()
            changes = {"status": new_status, "updated_at": now}
            if new_status == AppointmentStatus.PENDING_PAYMENT:
                changes["payment_status"] = PaymentStatus.PENDING
            if new_status == AppointmentStatus.CANCELLED:
                changes.update(cancelled_at=now, cancelled_by=CancelledBy.PROFESSIONAL)
            updated = repository.update(appointment, changes)

        logger.info(f"✅ Appointment {appointment_id} status {current.value} -> {new_status.value}")
        if new_status in NOTIFY_PATIENT_ON:
            await self.events.emit([self.events.to_patient(NOTIFY_PATIENT_ON[new_status], updated)])
        return updated

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    async def cancel(self, caller: Caller, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            party = authorize_party(appointment, caller)
            ensure_not_terminal(appointment)

            policy = self.check_cancellation_policy(appointment)
            if not policy.canCancel:
                raise PolicyViolation(
                    policy.reason,
                    {"remaining_hours": policy.hoursBeforeSession, "canCancel": False},
                )

            cancelled_by = CancelledBy.PROFESSIONAL if party == CallerRole.PROFESSIONAL else CancelledBy.PATIENT
            now = self.clock()
            updated = repository.update(
                appointment,
                {
                    "status": AppointmentStatus.CANCELLED,
                    "cancelled_at": now,
                    "cancelled_by": cancelled_by,
                    "cancellation_reason": reason,
                    "updated_at": now,
                },
            )

        logger.info(f"🚫 Appointment {appointment_id} cancelled by {cancelled_by.value}")
        await self.events.emit(
            [
                self.events.to_counterparty(
                    NotificationType.APPOINTMENT_CANCELLED,
                    updated,
                    party,
                    cancelledBy=cancelled_by.value,
                    reason=reason,
                )
            ]
        )
        return updated

    # ========================================================================
    # RESCHEDULE
    # ========================================================================

    async def reschedule(
        self, caller: Caller, appointment_id: str, new_date: date, new_time: str
    ) -> Appointment:
        # Professional id is needed for the lock key before the locked re-read
        professional_id = self.appointments.require(appointment_id).professional_id

        with self.store.transaction(professional_lock(professional_id), appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            party = authorize_party(appointment, caller)
            ensure_not_terminal(appointment)

            if (appointment.date, appointment.time) == (new_date, new_time):
                raise PolicyViolation("The appointment is already at that date and time")
            now = self.clock()
            if appointment_start(new_date, new_time) <= now:
                raise PolicyViolation("Appointments can only be moved to a future time")
            if not ConflictChecker(repository).is_slot_free(
                appointment.professional_id,
                new_date,
                new_time,
                appointment.duration_minutes,
                exclude_appointment_id=appointment.id,
            ):
                raise Conflict(
                    "This time slot is no longer available, please pick another",
                    {"date": new_date.isoformat(), "time": new_time},
                )

            entry = RescheduleEntry(
                old_date=appointment.date,
                old_time=appointment.time,
                new_date=new_date,
                new_time=new_time,
                at=now,
            )
            updated = repository.update(
                appointment,
                {
                    "date": new_date,
                    "time": new_time,
                    "reschedule_history": [*appointment.reschedule_history, entry],
                    "updated_at": now,
                },
            )

        logger.info(
            f"🔄 Appointment {appointment_id} moved {entry.old_date} {entry.old_time} -> {new_date} {new_time}"
        )
        extra = {
            "oldDate": entry.old_date.isoformat(),
            "oldTime": entry.old_time,
            "newDate": new_date.isoformat(),
            "newTime": new_time,
            "rescheduledBy": party.value,
        }
        await self.events.emit(
            [
                self.events.to_patient(NotificationType.APPOINTMENT_RESCHEDULED, updated, **extra),
                self.events.to_professional(NotificationType.APPOINTMENT_RESCHEDULED, updated, **extra),
            ]
        )
        return updated

    # ========================================================================
    # PAYMENT SUB-FLOW
    # ========================================================================

    async def submit_payment_receipt(self, caller: Caller, appointment_id: str, receipt_ref: str) -> Appointment:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            if authorize_party(appointment, caller) != CallerRole.PATIENT:
                raise Unauthorized("Only the patient can submit a payment receipt")
            ensure_not_terminal(appointment)
            if appointment.status not in (AppointmentStatus.PENDING_PAYMENT, AppointmentStatus.PAYMENT_REJECTED):
                raise PolicyViolation(
                    "This appointment is not waiting for a payment",
                    {"status": appointment.status.value},
                )

            updated = repository.update(
                appointment,
                {
                    "status": AppointmentStatus.PAYMENT_SUBMITTED,
                    "payment_status": PaymentStatus.PAYMENT_SUBMITTED,
                    "receipt_ref": receipt_ref,
                    "updated_at": self.clock(),
                },
            )

        logger.info(f"🧾 Payment receipt submitted for appointment {appointment_id}")
        await self.events.emit(
            [
                self.events.to_professional(
                    NotificationType.PAYMENT_UPLOADED,
                    updated,
                    depositMinorUnits=updated.deposit_minor_units,
                )
            ]
        )
        return updated

    async def review_payment(
        self,
        caller: Caller,
        appointment_id: str,
        action: PaymentAction,
        rejection_reason: Optional[str] = None,
    ) -> Appointment:
        with self.store.transaction(appointment_lock(appointment_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            authorize_professional(appointment, caller)
            ensure_not_terminal(appointment)
            if appointment.payment_status != PaymentStatus.PAYMENT_SUBMITTED:
                raise PolicyViolation(
                    "There is no submitted payment to review",
                    {"paymentStatus": appointment.payment_status.value},
                )

            now = self.clock()
            if action == PaymentAction.APPROVE:
                changes = {
                    "status": AppointmentStatus.CONFIRMED,
                    "payment_status": PaymentStatus.PAID,
                    "updated_at": now,
                }
            else:
                count = appointment.payment_rejection_count + 1
                changes = {
                    "payment_rejection_count": count,
                    "last_rejection_reason": rejection_reason,
                    "updated_at": now,
                }
                if count >= self.policy.payment_rejection_threshold:
                    changes.update(
                        status=AppointmentStatus.CANCELLED,
                        payment_status=PaymentStatus.FAILED,
                        cancelled_at=now,
                        cancelled_by=CancelledBy.SYSTEM,
                        cancellation_reason="Payment not verified",
                    )
                else:
                    changes.update(
                        status=AppointmentStatus.PENDING_PAYMENT,
                        payment_status=PaymentStatus.REJECTED,
                    )
            updated = repository.update(appointment, changes)

        logger.info(
            f"💳 Payment {action.value} for appointment {appointment_id} -> {updated.status.value} "
            f"(rejections: {updated.payment_rejection_count})"
        )
        if action == PaymentAction.APPROVE:
            kind = NotificationType.PAYMENT_RECEIVED
        elif updated.status == AppointmentStatus.CANCELLED:
            kind = NotificationType.APPOINTMENT_CANCELLED
        else:
            kind = NotificationType.PAYMENT_REJECTED
        await self.events.emit(
            [
                self.events.to_patient(
                    kind,
                    updated,
                    rejectionReason=rejection_reason,
                    paymentRejectionCount=updated.payment_rejection_count,
                )
            ]
        )
        return updated
