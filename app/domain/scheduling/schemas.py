"""Scheduling domain schemas - Pydantic models for validation and the normalized Appointment view"""

from datetime import date as date_type
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import validate_email, validate_hhmm, validate_percent

DAY_KEYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class AppointmentSource(str, Enum):
    PROFESSIONAL_CREATED = "professional_created"
    PATIENT_CREATED = "patient_created"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_REJECTED = "payment_rejected"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})
# Statuses that occupy a slot on the professional's agenda
BLOCKING_STATUSES = frozenset(set(AppointmentStatus) - TERMINAL_STATUSES)


class PaymentStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAID = "paid"
    REJECTED = "rejected"
    FAILED = "failed"


class RoomStatus(str, Enum):
    WAITING = "waiting"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


class CallerRole(str, Enum):
    PATIENT = "patient"
    PROFESSIONAL = "professional"


class CancelledBy(str, Enum):
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    SYSTEM = "system"


class PaymentAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AppointmentView(str, Enum):
    UPCOMING = "upcoming"  # (date, time) ascending
    HISTORY = "history"  # createdAt descending


class Caller(BaseModel):
    """Already-authenticated identity handed to the engine"""

    uid: str
    role: CallerRole
    email: Optional[str] = None
    name: Optional[str] = None


# ============================================================================
# AVAILABILITY
# ============================================================================


def _to_minutes(value: Any) -> Any:
    if isinstance(value, str):
        if value.strip() == "24:00":
            return 24 * 60
        hours, minutes = validate_hhmm(value).split(":")
        return int(hours) * 60 + int(minutes)
    return value


class TimeRange(BaseModel):
    """One availability range inside a day, in minutes since midnight"""

    start: int = Field(..., ge=0, le=24 * 60)
    end: int = Field(..., ge=0, le=24 * 60)

    @model_validator(mode="before")
    @classmethod
    def accept_clock_strings(cls, data: Any) -> Any:
        # Profiles store ranges as {"start": "09:00", "end": "12:00"}
        if isinstance(data, dict):
            return {key: _to_minutes(value) for key, value in data.items()}
        return data


class DayAvailability(BaseModel):
    enabled: bool = False
    ranges: list[TimeRange] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_slots_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "ranges" not in data and "slots" in data:
            data = {**data, "ranges": data["slots"]}
        return data


class WeeklyAvailability(BaseModel):
    days: dict[str, DayAvailability] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def accept_flat_mapping(cls, data: Any) -> Any:
        if isinstance(data, dict) and "days" not in data:
            return {"days": {key: value for key, value in data.items() if key in DAY_KEYS}}
        return data

    def for_date(self, day: date_type) -> DayAvailability:
        """Template for the weekday of ``day``; missing days are closed"""
        return self.days.get(DAY_KEYS[day.weekday()], DayAvailability())


class Service(BaseModel):
    id: str
    name: str
    duration_minutes: int = Field(..., gt=0)
    price_minor_units: int = Field(..., ge=0)


class ProfessionalProfile(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    availability: WeeklyAvailability = Field(default_factory=WeeklyAvailability)
    session_duration: int = Field(..., gt=0)
    buffer_minutes: int = Field(0, ge=0)
    session_price_minor_units: int = Field(0, ge=0)
    deposit_percent: int = Field(0, ge=0, le=100)


# ============================================================================
# APPOINTMENT (normalized view over both sources)
# ============================================================================


class AppointmentRef(BaseModel):
    source: AppointmentSource
    id: str

    model_config = {"frozen": True}


class RescheduleEntry(BaseModel):
    old_date: date_type
    old_time: str
    new_date: date_type
    new_time: str
    at: datetime


class Appointment(BaseModel):
    id: str
    source: AppointmentSource

    # Parties
    patient_id: Optional[str] = None
    patient_name: str = ""
    patient_email: Optional[str] = None
    professional_id: str
    professional_name: str = ""

    # Scheduling
    date: date_type
    time: str
    duration_minutes: int
    service_id: Optional[str] = None
    service_name: Optional[str] = None

    # Commercial
    price_minor_units: int = 0
    deposit_percent: int = 0
    payment_status: PaymentStatus = PaymentStatus.NOT_REQUIRED
    receipt_ref: Optional[str] = None
    payment_rejection_count: int = 0
    last_rejection_reason: Optional[str] = None

    # Lifecycle
    status: AppointmentStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None
    reschedule_history: list[RescheduleEntry] = Field(default_factory=list)

    # Session
    meeting_room_id: Optional[str] = None
    room_status: RoomStatus = RoomStatus.WAITING
    professional_joined_at: Optional[datetime] = None
    patient_joined_at: Optional[datetime] = None

    reminders: dict[str, Any] = Field(default_factory=dict)
    review_id: Optional[str] = None

    @property
    def ref(self) -> AppointmentRef:
        return AppointmentRef(source=self.source, id=self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def deposit_minor_units(self) -> int:
        return (self.price_minor_units * self.deposit_percent) // 100


# ============================================================================
# REQUESTS
# ============================================================================


class CreateAppointmentRequest(BaseModel):
    """Booking (patient) or manual entry (professional)"""

    professionalId: str
    date: date_type
    time: str
    serviceId: Optional[str] = None
    durationMinutes: Optional[int] = Field(None, gt=0, le=480)
    priceMinorUnits: Optional[int] = Field(None, ge=0)
    depositPercent: Optional[int] = None
    # Manual entries: off-platform patients may have no account
    patientId: Optional[str] = None
    patientName: Optional[str] = None
    patientEmail: Optional[str] = None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)

    @field_validator("depositPercent")
    @classmethod
    def validate_deposit(cls, v):
        return validate_percent(v)

    @field_validator("patientEmail")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)


class ChangeStatusRequest(BaseModel):
    status: AppointmentStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    newDate: date_type
    newTime: str

    @field_validator("newTime")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)


class SubmitReceiptRequest(BaseModel):
    receiptRef: str = Field(..., min_length=1, max_length=512)


class ReceiptUploadRequest(BaseModel):
    contentType: str = "image/jpeg"


class PaymentReviewRequest(BaseModel):
    action: PaymentAction
    rejectionReason: Optional[str] = Field(None, max_length=500)


class CreateReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=500)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v):
        return v.strip()


class ReviewReplyRequest(BaseModel):
    response: str

    @field_validator("response")
    @classmethod
    def validate_response(cls, v):
        v = v.strip()
        if not 10 <= len(v) <= 500:
            raise ValueError("Response must be between 10 and 500 characters")
        return v


# ============================================================================
# RESPONSES
# ============================================================================


class CancellationPolicy(BaseModel):
    canCancel: bool
    hoursBeforeSession: int
    reason: Optional[str] = None


class AvailableSlot(BaseModel):
    time: str
    available: bool
    booked: bool = False
    past: bool = False


class AvailableSlotsResponse(BaseModel):
    professionalId: str
    date: date_type
    durationMinutes: int
    slots: list[AvailableSlot]


class AppointmentListResponse(BaseModel):
    appointments: list[Appointment]
    warnings: list[str] = Field(default_factory=list)


class JoinInfo(BaseModel):
    roomName: str
    url: str
    isModerator: bool
    roomStatus: RoomStatus


class ReceiptUploadResponse(BaseModel):
    receiptRef: str
    uploadUrl: str
    expiresIn: int


class DailyStats(BaseModel):
    date: date_type
    sessions: int = 0
    revenueMinorUnits: int = 0


class MonthlyReport(BaseModel):
    year: int
    month: int
    totalSessions: int = 0
    completedSessions: int = 0
    cancelledSessions: int = 0
    revenueMinorUnits: int = 0
    averageSessionPriceMinorUnits: int = 0
    uniquePatients: int = 0
    cancellationRate: float = 0.0
    dailyStats: list[DailyStats] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ============================================================================
# REVIEWS
# ============================================================================


class Review(BaseModel):
    id: str
    appointmentId: str
    professionalId: str
    patientId: str
    patientName: str = ""
    rating: int
    comment: str = ""
    createdAt: datetime
    professionalResponse: Optional[str] = None
    professionalResponseAt: Optional[datetime] = None


class ReviewEligibility(BaseModel):
    canReview: bool
    reason: Optional[str] = None


class ReviewStats(BaseModel):
    averageRating: float = 0.0
    totalReviews: int = 0
    ratingDistribution: dict[int, int] = Field(default_factory=lambda: {n: 0 for n in range(1, 6)})


class ReviewListResponse(BaseModel):
    reviews: list[Review]
    stats: ReviewStats
