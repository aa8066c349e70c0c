"""Tests for session reviews and the professional rating."""

import pytest
import pytest_asyncio
from pydantic import ValidationError

from app.domain.scheduling.review_service import ReviewService
from app.domain.scheduling.schemas import (
    AppointmentStatus,
    CreateAppointmentRequest,
    CreateReviewRequest,
    ReviewReplyRequest,
)
from app.domain.scheduling.service import AppointmentLifecycleService
from app.shared.errors import Conflict, NotFound, PolicyViolation, Unauthorized

from .conftest import PRO_ID, TUESDAY


@pytest.fixture
def engine(store, publisher, clock):
    return AppointmentLifecycleService(store, publisher, clock=clock)


@pytest.fixture
def reviews(store, publisher, clock):
    return ReviewService(store, publisher, clock=clock)


async def completed_session(engine, patient, pro, time="10:00"):
    appointment = await engine.create_appointment(
        patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time=time)
    )
    await engine.change_status(pro, appointment.id, AppointmentStatus.CONFIRMED)
    return await engine.change_status(pro, appointment.id, AppointmentStatus.COMPLETED)


@pytest_asyncio.fixture
async def completed(engine, professional, patient, pro):
    return await completed_session(engine, patient, pro)


class TestEligibility:
    """Tests for who may review which session"""

    @pytest.mark.asyncio
    async def test_patient_of_a_completed_session(self, reviews, completed, patient):
        assert reviews.check_eligibility(patient, completed.id).canReview is True

    @pytest.mark.asyncio
    async def test_unfinished_session(self, engine, reviews, professional, patient):
        appointment = await engine.create_appointment(
            patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="10:00")
        )
        eligibility = reviews.check_eligibility(patient, appointment.id)

        assert eligibility.canReview is False
        assert "completed" in eligibility.reason
        with pytest.raises(PolicyViolation):
            await reviews.create_review(patient, appointment.id, CreateReviewRequest(rating=5))

    @pytest.mark.asyncio
    async def test_only_the_patient_reviews(self, reviews, completed, other_patient, pro):
        assert reviews.check_eligibility(other_patient, completed.id).canReview is False
        for caller in (other_patient, pro):
            with pytest.raises(Unauthorized):
                await reviews.create_review(caller, completed.id, CreateReviewRequest(rating=1))

    def test_unknown_appointment(self, reviews, patient):
        with pytest.raises(NotFound):
            reviews.check_eligibility(patient, "apt_missing")


class TestCreateReview:
    """Tests for storing a review and refreshing the rating"""

    @pytest.mark.asyncio
    async def test_review_links_and_rates(self, reviews, engine, completed, patient, store, publisher):
        review = await reviews.create_review(
            patient, completed.id, CreateReviewRequest(rating=5, comment="  Very helpful session  ")
        )

        assert review.id.startswith("rev_")
        assert review.comment == "Very helpful session"
        assert review.patientId == "patient_juan"
        assert engine.get_appointment(patient, completed.id).review_id == review.id

        profile = store.get("professionals", PRO_ID)
        assert profile["rating"] == 5.0
        assert profile["reviewCount"] == 1
        assert publisher.types_for(PRO_ID)[-1] == "review_received"

    @pytest.mark.asyncio
    async def test_one_review_per_session(self, reviews, completed, patient):
        await reviews.create_review(patient, completed.id, CreateReviewRequest(rating=4))

        with pytest.raises(Conflict):
            await reviews.create_review(patient, completed.id, CreateReviewRequest(rating=5))
        assert reviews.check_eligibility(patient, completed.id).canReview is False

    @pytest.mark.asyncio
    async def test_stats_across_sessions(self, reviews, engine, completed, patient, other_patient, pro, store):
        second = await completed_session(engine, other_patient, pro, time="11:00")
        await reviews.create_review(patient, completed.id, CreateReviewRequest(rating=5))
        await reviews.create_review(other_patient, second.id, CreateReviewRequest(rating=4))

        stats = reviews.get_stats(PRO_ID)

        assert stats.totalReviews == 2
        assert stats.averageRating == 4.5
        assert stats.ratingDistribution == {1: 0, 2: 0, 3: 0, 4: 1, 5: 1}
        assert store.get("professionals", PRO_ID)["rating"] == 4.5

    def test_no_reviews_yet(self, reviews, professional):
        stats = reviews.get_stats(PRO_ID)
        assert stats.totalReviews == 0
        assert stats.averageRating == 0.0

    def test_rating_bounds(self):
        with pytest.raises(ValidationError):
            CreateReviewRequest(rating=6)
        with pytest.raises(ValidationError):
            CreateReviewRequest(rating=0)


class TestReply:
    """Tests for the professional's answer to a review"""

    @pytest.mark.asyncio
    async def test_reply(self, reviews, completed, patient, pro):
        review = await reviews.create_review(patient, completed.id, CreateReviewRequest(rating=3))

        answered = reviews.reply(pro, review.id, "Thanks, see you next week")

        assert answered.professionalResponse == "Thanks, see you next week"
        assert answered.professionalResponseAt is not None
        assert reviews.list_for_professional(PRO_ID)[0].professionalResponse == answered.professionalResponse

    @pytest.mark.asyncio
    async def test_reply_to_someone_elses_review(self, reviews, completed, patient, deposit_pro):
        review = await reviews.create_review(patient, completed.id, CreateReviewRequest(rating=3))
        with pytest.raises(Unauthorized):
            reviews.reply(deposit_pro, review.id, "Not my session at all")

    def test_unknown_review(self, reviews, pro):
        with pytest.raises(NotFound):
            reviews.reply(pro, "rev_missing", "Thanks for the feedback")

    def test_reply_length(self):
        with pytest.raises(ValidationError):
            ReviewReplyRequest(response="  Thanks  ")
