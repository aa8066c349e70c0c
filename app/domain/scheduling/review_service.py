"""Patient reviews of completed sessions and the professional rating they feed"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ...document_store import DocumentStore, Where, generate_id
from ...shared.errors import Conflict, NotFound, PolicyViolation, Unauthorized
from .events import EventPublisher, NotificationType
from .repository import PROFESSIONALS, AppointmentRepository, ProfessionalRepository
from .schemas import (
    Appointment,
    AppointmentStatus,
    Caller,
    CreateReviewRequest,
    Review,
    ReviewEligibility,
    ReviewStats,
)
from .service import EventEmitter, appointment_lock, professional_lock
from .time_calculator import utc_now

logger = logging.getLogger(__name__)

REVIEWS = "reviews"


def compute_stats(reviews: list[Review]) -> ReviewStats:
    stats = ReviewStats()
    if not reviews:
        return stats
    for review in reviews:
        stats.ratingDistribution[review.rating] += 1
    stats.totalReviews = len(reviews)
    stats.averageRating = round(sum(r.rating for r in reviews) / len(reviews), 1)
    return stats


class ReviewService:
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

    @staticmethod
    def _reviews_for(store: DocumentStore, field: str, value: str) -> list[Review]:
        return [Review.model_validate(raw) for raw in store.query(REVIEWS, [Where(field, "==", value)])]

    def _eligibility(self, store: DocumentStore, appointment: Appointment, caller: Caller) -> ReviewEligibility:
        if not appointment.patient_id or caller.uid != appointment.patient_id:
            return ReviewEligibility(canReview=False, reason="Only the patient of this appointment can review it")
        if appointment.status != AppointmentStatus.COMPLETED:
            return ReviewEligibility(canReview=False, reason="Only completed sessions can be reviewed")
        if appointment.review_id or self._reviews_for(store, "appointmentId", appointment.id):
            return ReviewEligibility(canReview=False, reason="This session has already been reviewed")
        return ReviewEligibility(canReview=True)

    def check_eligibility(self, caller: Caller, appointment_id: str) -> ReviewEligibility:
        appointment = self.appointments.require(appointment_id)
        return self._eligibility(self.store, appointment, caller)

    async def create_review(self, caller: Caller, appointment_id: str, data: CreateReviewRequest) -> Review:
        """
        Store the review, link it from the appointment and refresh the
        professional's rating in one transaction.

        Raises:
            Unauthorized: caller is not the appointment's patient
            PolicyViolation: session not completed
            Conflict: session already reviewed
        """
        professional_id = self.appointments.require(appointment_id).professional_id

        with self.store.transaction(appointment_lock(appointment_id), professional_lock(professional_id)) as tx:
            repository = AppointmentRepository(tx)
            appointment = repository.require(appointment_id)
            eligibility = self._eligibility(tx, appointment, caller)
            if not eligibility.canReview:
                if caller.uid != appointment.patient_id:
                    raise Unauthorized(eligibility.reason)
                if appointment.status != AppointmentStatus.COMPLETED:
                    raise PolicyViolation(eligibility.reason, {"status": appointment.status.value})
                raise Conflict(eligibility.reason)

            now = self.clock()
            raw = tx.create(
                REVIEWS,
                {
                    "appointmentId": appointment.id,
                    "professionalId": appointment.professional_id,
                    "patientId": appointment.patient_id,
                    "patientName": appointment.patient_name or caller.name or "",
                    "rating": data.rating,
                    "comment": data.comment,
                    "createdAt": now.isoformat(),
                },
                doc_id=generate_id("rev"),
            )
            review = Review.model_validate(raw)
            updated = repository.update(appointment, {"review_id": review.id})

            stats = compute_stats(self._reviews_for(tx, "professionalId", appointment.professional_id))
            tx.update(
                PROFESSIONALS,
                appointment.professional_id,
                {"rating": stats.averageRating, "reviewCount": stats.totalReviews, "lastRatingUpdate": now.isoformat()},
            )

        logger.info(
            f"⭐ Review {review.id} ({review.rating}/5) for professional {review.professionalId}, "
            f"rating now {stats.averageRating} over {stats.totalReviews}"
        )
        await self.events.emit(
            [self.events.to_professional(NotificationType.REVIEW_RECEIVED, updated, rating=review.rating)]
        )
        return review

    def list_for_professional(self, professional_id: str) -> list[Review]:
        reviews = self._reviews_for(self.store, "professionalId", professional_id)
        return sorted(reviews, key=lambda r: r.createdAt, reverse=True)

    def get_stats(self, professional_id: str) -> ReviewStats:
        return compute_stats(self._reviews_for(self.store, "professionalId", professional_id))

    def reply(self, caller: Caller, review_id: str, response: str) -> Review:
        """Professional's public answer; a later reply replaces the earlier one"""
        raw: Optional[dict] = self.store.get(REVIEWS, review_id)
        if not raw:
            raise NotFound("Review not found", {"reviewId": review_id})
        if raw.get("professionalId") != caller.uid:
            raise Unauthorized("You can only reply to reviews of your own sessions")

        updated = self.store.update(
            REVIEWS,
            review_id,
            {"professionalResponse": response, "professionalResponseAt": self.clock().isoformat()},
        )
        logger.info(f"💬 Professional {caller.uid} replied to review {review_id}")
        return Review.model_validate(updated)
