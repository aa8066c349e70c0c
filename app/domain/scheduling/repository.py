"""
Scheduling repository - document store access for appointments and professionals

Appointments live in two collections written by different sides of the
marketplace:

- ``appointments``: booked by patients
- ``bookings``: entered manually by professionals

Both are read through one ``AppointmentRepository`` that maps each raw record
into the normalized ``Appointment`` with per-source field fallbacks. Ids carry
a per-source prefix so the two id spaces never collide.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from ...config import DEFAULT_BUFFER_MINUTES, DEFAULT_SESSION_DURATION
from ...document_store import DocumentStore, Where, generate_id
from ...shared.errors import NotFound, SchedulingError, UpstreamUnavailable
from .schemas import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    AppointmentView,
    ProfessionalProfile,
    RescheduleEntry,
    Service,
    WeeklyAvailability,
)

logger = logging.getLogger(__name__)

PROFESSIONALS = "professionals"
SERVICES = "services"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Normalized field -> raw keys, first one is where writes go
COMMON_FIELDS: dict[str, tuple[str, ...]] = {
    "professional_id": ("professionalId",),
    "professional_name": ("professionalName",),
    "date": ("date",),
    "time": ("time",),
    "duration_minutes": ("duration", "durationMinutes"),
    "service_id": ("serviceId",),
    "deposit_percent": ("depositPercent",),
    "payment_status": ("paymentStatus",),
    "receipt_ref": ("receiptRef", "receiptUrl"),
    "payment_rejection_count": ("paymentRejections", "paymentRejectionCount"),
    "last_rejection_reason": ("rejectionReason",),
    "status": ("status",),
    "created_at": ("createdAt",),
    "updated_at": ("updatedAt",),
    "cancelled_at": ("cancelledAt",),
    "cancelled_by": ("cancelledBy",),
    "cancellation_reason": ("cancelReason", "cancellationReason"),
    "reschedule_history": ("rescheduleHistory",),
    "meeting_room_id": ("jitsiRoom", "meetingRoomId"),
    "room_status": ("roomStatus",),
    "professional_joined_at": ("professionalJoinedAt",),
    "patient_joined_at": ("patientJoinedAt",),
    "reminders": ("reminders",),
    "review_id": ("reviewId",),
}


@dataclass(frozen=True)
class SourceAdapter:
    """How one source collection spells the fields that differ between sides"""

    source: AppointmentSource
    collection: str
    id_prefix: str
    fields: dict[str, tuple[str, ...]]

    def owns(self, appointment_id: str) -> bool:
        return appointment_id.startswith(f"{self.id_prefix}_")

    def keys_for(self, name: str) -> tuple[str, ...]:
        return self.fields.get(name) or COMMON_FIELDS[name]

    def read(self, raw: dict, name: str, default: Any = None) -> Any:
        for key in self.keys_for(name):
            value = raw.get(key)
            if value not in (None, ""):
                return value
        return default

    def to_appointment(self, raw: dict) -> Appointment:
        history = [
            RescheduleEntry(
                old_date=entry.get("oldDate"),
                old_time=entry.get("oldTime"),
                new_date=entry.get("newDate"),
                new_time=entry.get("newTime"),
                at=entry.get("rescheduledAt") or entry.get("at"),
            )
            for entry in self.read(raw, "reschedule_history", [])
        ]
        return Appointment(
            id=raw["id"],
            source=self.source,
            patient_id=self.read(raw, "patient_id"),
            patient_name=self.read(raw, "patient_name", ""),
            patient_email=self.read(raw, "patient_email"),
            professional_id=self.read(raw, "professional_id"),
            professional_name=self.read(raw, "professional_name", ""),
            date=self.read(raw, "date"),
            time=self.read(raw, "time"),
            duration_minutes=self.read(raw, "duration_minutes", DEFAULT_SESSION_DURATION),
            service_id=self.read(raw, "service_id"),
            service_name=self.read(raw, "service_name"),
            price_minor_units=self.read(raw, "price_minor_units", 0),
            deposit_percent=self.read(raw, "deposit_percent", 0),
            payment_status=self.read(raw, "payment_status", "not_required"),
            receipt_ref=self.read(raw, "receipt_ref"),
            payment_rejection_count=self.read(raw, "payment_rejection_count", 0),
            last_rejection_reason=self.read(raw, "last_rejection_reason"),
            status=self.read(raw, "status", AppointmentStatus.PENDING),
            created_at=self.read(raw, "created_at", EPOCH),
            updated_at=self.read(raw, "updated_at"),
            cancelled_at=self.read(raw, "cancelled_at"),
            cancelled_by=self.read(raw, "cancelled_by"),
            cancellation_reason=self.read(raw, "cancellation_reason"),
            reschedule_history=history,
            meeting_room_id=self.read(raw, "meeting_room_id"),
            room_status=self.read(raw, "room_status", "waiting"),
            professional_joined_at=self.read(raw, "professional_joined_at"),
            patient_joined_at=self.read(raw, "patient_joined_at"),
            reminders=self.read(raw, "reminders", {}),
            review_id=self.read(raw, "review_id"),
        )

    def to_raw(self, changes: dict[str, Any]) -> dict:
        """Normalized changes -> raw partial document for this source"""
        raw = {}
        for name, value in changes.items():
            if name == "reschedule_history":
                value = [
                    {
                        "oldDate": entry.old_date,
                        "oldTime": entry.old_time,
                        "newDate": entry.new_date,
                        "newTime": entry.new_time,
                        "rescheduledAt": entry.at,
                    }
                    for entry in value
                ]
            raw[self.keys_for(name)[0]] = to_jsonable_python(value)
        return raw


PATIENT_SOURCE = SourceAdapter(
    source=AppointmentSource.PATIENT_CREATED,
    collection="appointments",
    id_prefix="apt",
    fields={
        "patient_id": ("userId", "patientId"),
        "patient_name": ("patientName", "userName"),
        "patient_email": ("patientEmail", "userEmail"),
        "price_minor_units": ("price", "servicePrice"),
        "service_name": ("service", "serviceName"),
    },
)

PROFESSIONAL_SOURCE = SourceAdapter(
    source=AppointmentSource.PROFESSIONAL_CREATED,
    collection="bookings",
    id_prefix="bkg",
    fields={
        "patient_id": ("patientId", "userId"),
        "patient_name": ("userName", "patientName"),
        "patient_email": ("userEmail", "patientEmail"),
        "price_minor_units": ("servicePrice", "price"),
        "service_name": ("serviceName", "service"),
    },
)

SOURCES = (PATIENT_SOURCE, PROFESSIONAL_SOURCE)


def adapter_for(source: AppointmentSource) -> SourceAdapter:
    return PATIENT_SOURCE if source == AppointmentSource.PATIENT_CREATED else PROFESSIONAL_SOURCE


@dataclass
class AppointmentFilter:
    professional_id: Optional[str] = None
    patient_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    statuses: Optional[Sequence[AppointmentStatus]] = None


@dataclass
class AppointmentListing:
    appointments: list[Appointment] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    degraded_sources: list[AppointmentSource] = field(default_factory=list)


class AppointmentRepository:
    """One read model over both appointment collections"""

    def __init__(self, store: DocumentStore):
        self.store = store

    def _predicates(self, adapter: SourceAdapter, flt: AppointmentFilter) -> list[Where]:
        predicates = []
        if flt.professional_id:
            predicates.append(Where("professionalId", "==", flt.professional_id))
        if flt.date_from:
            predicates.append(Where("date", ">=", flt.date_from.isoformat()))
        if flt.date_to:
            predicates.append(Where("date", "<=", flt.date_to.isoformat()))
        if flt.statuses is not None:
            predicates.append(Where("status", "in", [s.value for s in flt.statuses]))
        return predicates

    def _query_source(self, adapter: SourceAdapter, flt: AppointmentFilter) -> list[Appointment]:
        predicates = self._predicates(adapter, flt)
        if flt.patient_id:
            # Older records spell the patient key differently, so each spelling is queried
            raw_by_id = {}
            for key in adapter.keys_for("patient_id"):
                for raw in self.store.query(adapter.collection, [*predicates, Where(key, "==", flt.patient_id)]):
                    raw_by_id[raw["id"]] = raw
            raws = list(raw_by_id.values())
        else:
            raws = self.store.query(adapter.collection, predicates)

        appointments = []
        for raw in raws:
            try:
                appointments.append(adapter.to_appointment(raw))
            except ValidationError as e:
                logger.warning(f"⚠️ Skipping malformed {adapter.collection}/{raw.get('id')}: {e.error_count()} errors")
        return appointments

    def list_appointments(
        self,
        flt: AppointmentFilter,
        view: AppointmentView = AppointmentView.UPCOMING,
        strict: bool = False,
    ) -> AppointmentListing:
        """
        Query both sources independently and merge.

        A failing source is logged and reported in ``warnings``; the call only
        fails when every source fails, or when ``strict`` is set (write paths
        must never decide on a partial view).
        """
        listing = AppointmentListing()
        for adapter in SOURCES:
            try:
                listing.appointments.extend(self._query_source(adapter, flt))
            except SchedulingError as e:
                if strict:
                    raise UpstreamUnavailable(f"Could not read {adapter.collection}") from e
                logger.warning(f"⚠️ Source {adapter.collection} unavailable, returning partial results: {e}")
                listing.degraded_sources.append(adapter.source)
                listing.warnings.append(f"Some {adapter.source.value} appointments could not be loaded")

        if len(listing.degraded_sources) == len(SOURCES):
            logger.error("❌ All appointment sources unavailable")
            raise UpstreamUnavailable("Appointments are temporarily unavailable, please retry")

        if view == AppointmentView.HISTORY:
            listing.appointments.sort(key=lambda a: a.created_at, reverse=True)
        else:
            listing.appointments.sort(key=lambda a: (a.date, a.time))
        return listing

    def find(self, appointment_id: str) -> Optional[Appointment]:
        owners = [a for a in SOURCES if a.owns(appointment_id)] or list(SOURCES)
        for adapter in owners:
            raw = self.store.get(adapter.collection, appointment_id)
            if not raw:
                continue
            try:
                return adapter.to_appointment(raw)
            except ValidationError as e:
                # Listings skip the same record, so it reads as missing here too
                logger.error(f"❌ Malformed record {adapter.collection}/{appointment_id}: {e.error_count()} errors")
                return None
        return None

    def require(self, appointment_id: str) -> Appointment:
        appointment = self.find(appointment_id)
        if not appointment:
            raise NotFound("Appointment not found", {"appointmentId": appointment_id})
        return appointment

    def create(self, source: AppointmentSource, values: dict[str, Any]) -> Appointment:
        adapter = adapter_for(source)
        raw = self.store.create(
            adapter.collection, adapter.to_raw(values), doc_id=generate_id(adapter.id_prefix)
        )
        return adapter.to_appointment(raw)

    def update(self, appointment: Appointment, changes: dict[str, Any]) -> Appointment:
        adapter = adapter_for(appointment.source)
        raw = self.store.update(adapter.collection, appointment.id, adapter.to_raw(changes))
        return adapter.to_appointment(raw)


class ProfessionalRepository:
    """Read-only access to professional profiles and their services"""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get_professional(self, professional_id: str) -> Optional[ProfessionalProfile]:
        raw = self.store.get(PROFESSIONALS, professional_id)
        if not raw:
            return None
        return ProfessionalProfile(
            id=raw["id"],
            name=raw.get("name") or raw.get("displayName") or "",
            email=raw.get("email"),
            availability=WeeklyAvailability.model_validate(raw.get("availability") or {}),
            session_duration=raw.get("sessionDuration") or DEFAULT_SESSION_DURATION,
            buffer_minutes=raw.get("bufferTime", DEFAULT_BUFFER_MINUTES),
            session_price_minor_units=raw.get("sessionPrice") or 0,
            deposit_percent=raw.get("depositPercent") or 0,
        )

    def require_professional(self, professional_id: str) -> ProfessionalProfile:
        profile = self.get_professional(professional_id)
        if not profile:
            raise NotFound("Professional not found", {"professionalId": professional_id})
        return profile

    def is_professional(self, uid: str) -> bool:
        return self.store.get(PROFESSIONALS, uid) is not None

    def require_service(self, professional_id: str, service_id: str) -> Service:
        raw = self.store.get(SERVICES, service_id)
        if not raw or raw.get("professionalId") != professional_id:
            raise NotFound("Service not found", {"serviceId": service_id})
        return Service(
            id=raw["id"],
            name=raw.get("name", ""),
            duration_minutes=raw.get("duration") or raw.get("durationMinutes") or DEFAULT_SESSION_DURATION,
            price_minor_units=raw.get("price", 0),
        )
