"""Scheduling router - FastAPI endpoints for slots, appointments, payments, session rooms and reviews"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query

from ...auth import get_current_caller, get_current_professional
from ...config import RECEIPT_UPLOAD_URL_EXPIRATION
from ...dependencies import get_clock, get_document_store, get_event_publisher
from ...document_store import DocumentStore
from ...shared.errors import Unauthorized
from ...utils.storage import generate_receipt_key, generate_receipt_upload_url
from .events import EventPublisher
from .reports import build_monthly_report
from .review_service import ReviewService
from .room_service import RoomController
from .schemas import (
    Appointment,
    AppointmentListResponse,
    AppointmentView,
    AvailableSlotsResponse,
    Caller,
    CallerRole,
    CancellationPolicy,
    CancelRequest,
    ChangeStatusRequest,
    CreateAppointmentRequest,
    CreateReviewRequest,
    JoinInfo,
    MonthlyReport,
    PaymentReviewRequest,
    ReceiptUploadRequest,
    ReceiptUploadResponse,
    RescheduleRequest,
    Review,
    ReviewEligibility,
    ReviewListResponse,
    ReviewReplyRequest,
    SubmitReceiptRequest,
)
from .service import AppointmentLifecycleService
from .time_calculator import local_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
professionals_router = APIRouter(prefix="/professionals", tags=["Professionals"])


def get_lifecycle_service(
    store: DocumentStore = Depends(get_document_store),
    publisher: EventPublisher = Depends(get_event_publisher),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AppointmentLifecycleService:
    """Dependency injection for AppointmentLifecycleService"""
    return AppointmentLifecycleService(store, publisher, clock=clock)


def get_room_controller(
    store: DocumentStore = Depends(get_document_store),
    publisher: EventPublisher = Depends(get_event_publisher),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RoomController:
    """Dependency injection for RoomController"""
    return RoomController(store, publisher, clock=clock)


def get_review_service(
    store: DocumentStore = Depends(get_document_store),
    publisher: EventPublisher = Depends(get_event_publisher),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReviewService:
    return ReviewService(store, publisher, clock=clock)


# ============================================================================
# PROFESSIONALS
# ============================================================================


@professionals_router.get("/{professional_id}/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    professional_id: str,
    day: date = Query(..., alias="date"),
    service_id: Optional[str] = None,
    _caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Bookable slots of a professional for one date"""
    return service.availability.get_available_slots(professional_id, day, service_id)


@professionals_router.get("/me/reports/monthly", response_model=MonthlyReport)
async def get_monthly_report(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    caller: Caller = Depends(get_current_professional),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    today = local_today(service.clock())
    return build_monthly_report(service.appointments, caller.uid, year or today.year, month or today.month)


# ============================================================================
# APPOINTMENTS - READS
# ============================================================================


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    view: AppointmentView = AppointmentView.UPCOMING,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Caller's appointments from both sources; warnings list any source that could not be read"""
    listing = service.list_for_caller(caller, view, date_from, date_to)
    return AppointmentListResponse(appointments=listing.appointments, warnings=listing.warnings)


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return service.get_appointment(caller, appointment_id)


@router.get("/{appointment_id}/cancellation-policy", response_model=CancellationPolicy)
async def get_cancellation_policy(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appointment = service.get_appointment(caller, appointment_id)
    return service.check_cancellation_policy(appointment)


# ============================================================================
# APPOINTMENTS - LIFECYCLE
# ============================================================================


@router.post("", response_model=Appointment, status_code=201)
async def book_appointment(
    data: CreateAppointmentRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Patient booking of a generated slot; professionals add entries through /manual"""
    if caller.role != CallerRole.PATIENT:
        raise Unauthorized("Professional accounts add appointments through manual entry")
    return await service.create_appointment(caller, data)


@router.post("/manual", response_model=Appointment, status_code=201)
async def create_manual_appointment(
    data: CreateAppointmentRequest,
    caller: Caller = Depends(get_current_professional),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Professional-entered appointment, possibly for an off-platform patient"""
    return await service.create_appointment(caller, data)


@router.patch("/{appointment_id}/status", response_model=Appointment)
async def change_status(
    appointment_id: str,
    data: ChangeStatusRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return await service.change_status(caller, appointment_id, data.status)


@router.post("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_id: str,
    data: CancelRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return await service.cancel(caller, appointment_id, data.reason)


@router.post("/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return await service.reschedule(caller, appointment_id, data.newDate, data.newTime)


# ============================================================================
# PAYMENTS
# ============================================================================


@router.post("/{appointment_id}/receipt-upload-url", response_model=ReceiptUploadResponse)
async def create_receipt_upload_url(
    appointment_id: str,
    data: ReceiptUploadRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Presigned URL for uploading a proof of payment; submit the returned receiptRef afterwards"""
    appointment = service.get_appointment(caller, appointment_id)
    key = generate_receipt_key(appointment.id, data.contentType)
    return ReceiptUploadResponse(
        receiptRef=key,
        uploadUrl=generate_receipt_upload_url(key, data.contentType),
        expiresIn=RECEIPT_UPLOAD_URL_EXPIRATION,
    )


@router.post("/{appointment_id}/receipt", response_model=Appointment)
async def submit_payment_receipt(
    appointment_id: str,
    data: SubmitReceiptRequest,
    caller: Caller = Depends(get_current_caller),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return await service.submit_payment_receipt(caller, appointment_id, data.receiptRef)


@router.post("/{appointment_id}/payment-review", response_model=Appointment)
async def review_payment(
    appointment_id: str,
    data: PaymentReviewRequest,
    caller: Caller = Depends(get_current_professional),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return await service.review_payment(caller, appointment_id, data.action, data.rejectionReason)


# ============================================================================
# SESSION ROOM
# ============================================================================


@router.post("/{appointment_id}/room/open", response_model=JoinInfo)
async def open_room(
    appointment_id: str,
    caller: Caller = Depends(get_current_professional),
    rooms: RoomController = Depends(get_room_controller),
):
    return await rooms.open_room(caller, appointment_id)


@router.post("/{appointment_id}/room/join", response_model=JoinInfo)
async def join_room(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    rooms: RoomController = Depends(get_room_controller),
):
    return await rooms.join_meeting(caller, appointment_id)


@router.post("/{appointment_id}/room/end", response_model=Appointment)
async def end_room(
    appointment_id: str,
    caller: Caller = Depends(get_current_professional),
    rooms: RoomController = Depends(get_room_controller),
):
    return await rooms.end_room(caller, appointment_id)


# ============================================================================
# REVIEWS
# ============================================================================


@router.get("/{appointment_id}/review-eligibility", response_model=ReviewEligibility)
async def get_review_eligibility(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.check_eligibility(caller, appointment_id)


@router.post("/{appointment_id}/review", response_model=Review, status_code=201)
async def create_review(
    appointment_id: str,
    data: CreateReviewRequest,
    caller: Caller = Depends(get_current_caller),
    reviews: ReviewService = Depends(get_review_service),
):
    """Patient rating (1-5) of a completed session, once per appointment"""
    return await reviews.create_review(caller, appointment_id, data)


@professionals_router.get("/{professional_id}/reviews", response_model=ReviewListResponse)
async def list_professional_reviews(
    professional_id: str,
    reviews: ReviewService = Depends(get_review_service),
):
    """Public list, newest first, with the rating summary"""
    items = reviews.list_for_professional(professional_id)
    return ReviewListResponse(reviews=items, stats=reviews.get_stats(professional_id))


@professionals_router.post("/me/reviews/{review_id}/response", response_model=Review)
async def reply_to_review(
    review_id: str,
    data: ReviewReplyRequest,
    caller: Caller = Depends(get_current_professional),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.reply(caller, review_id, data.response)
