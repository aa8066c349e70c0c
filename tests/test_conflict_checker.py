"""Tests for the interval-overlap conflict checker."""

import pytest

from app.domain.scheduling.conflict_checker import ConflictChecker
from app.domain.scheduling.repository import AppointmentRepository
from app.domain.scheduling.schemas import AppointmentSource, AppointmentStatus
from app.shared.errors import UpstreamUnavailable

from .conftest import PRO_ID, TUESDAY, FlakyStore


def book(store, time, duration=50, status=AppointmentStatus.PENDING, source=AppointmentSource.PATIENT_CREATED):
    return AppointmentRepository(store).create(
        source,
        {
            "patient_id": "p1",
            "professional_id": PRO_ID,
            "date": TUESDAY,
            "time": time,
            "duration_minutes": duration,
            "status": status,
            "created_at": "2026-03-01T12:00:00+00:00",
        },
    )


class TestOverlap:
    """Tests for the interval predicate"""

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ((600, 690), (630, 680), True),
            ((600, 650), (650, 700), False),
            ((600, 650), (540, 601), True),
            ((600, 600), (600, 650), True),
            ((620, 620), (600, 650), True),
            ((650, 650), (600, 650), False),
        ],
    )
    def test_half_open_intervals(self, a, b, expected):
        assert ConflictChecker.overlaps(*a, *b) is expected
        assert ConflictChecker.overlaps(*b, *a) is expected


class TestIsSlotFree:
    """Tests against stored appointments"""

    def test_empty_day_is_free(self, store):
        assert ConflictChecker(AppointmentRepository(store)).is_slot_free(PRO_ID, TUESDAY, "10:00", 50)

    def test_booked_slot_is_taken_until_cancelled(self, store):
        appointment = book(store, "10:00")
        checker = ConflictChecker(AppointmentRepository(store))
        assert not checker.is_slot_free(PRO_ID, TUESDAY, "10:00", 50)

        AppointmentRepository(store).update(appointment, {"status": AppointmentStatus.CANCELLED})
        assert checker.is_slot_free(PRO_ID, TUESDAY, "10:00", 50)

    def test_ninety_minute_session_blocks_half_past(self, store):
        book(store, "10:00", duration=90)
        checker = ConflictChecker(AppointmentRepository(store))
        assert checker.is_slot_free(PRO_ID, TUESDAY, "10:30", 30) is False
        assert checker.is_slot_free(PRO_ID, TUESDAY, "11:30", 30) is True

    def test_point_query_without_duration(self, store):
        book(store, "10:00", duration=90)
        checker = ConflictChecker(AppointmentRepository(store))
        assert checker.is_slot_free(PRO_ID, TUESDAY, "10:30") is False

    def test_conflicts_are_checked_across_sources(self, store):
        book(store, "09:00", source=AppointmentSource.PROFESSIONAL_CREATED)
        checker = ConflictChecker(AppointmentRepository(store))
        assert not checker.is_slot_free(PRO_ID, TUESDAY, "09:30", 50)

    def test_payment_statuses_still_block(self, store):
        book(store, "09:00", status=AppointmentStatus.PAYMENT_SUBMITTED)
        book(store, "11:00", status=AppointmentStatus.PAYMENT_REJECTED)
        checker = ConflictChecker(AppointmentRepository(store))
        assert not checker.is_slot_free(PRO_ID, TUESDAY, "09:00", 50)
        assert not checker.is_slot_free(PRO_ID, TUESDAY, "11:00", 50)

    def test_completed_does_not_block(self, store):
        book(store, "09:00", status=AppointmentStatus.COMPLETED)
        assert ConflictChecker(AppointmentRepository(store)).is_slot_free(PRO_ID, TUESDAY, "09:00", 50)

    def test_excluding_self(self, store):
        appointment = book(store, "10:00")
        checker = ConflictChecker(AppointmentRepository(store))
        assert checker.is_slot_free(PRO_ID, TUESDAY, "10:30", 50, exclude_appointment_id=appointment.id)

    def test_other_professionals_do_not_block(self, store):
        book(store, "10:00")
        assert ConflictChecker(AppointmentRepository(store)).is_slot_free("pro_other", TUESDAY, "10:00", 50)

    def test_unreadable_source_fails_instead_of_reporting_free(self, store):
        checker = ConflictChecker(AppointmentRepository(FlakyStore(store, failing=["bookings"])))
        with pytest.raises(UpstreamUnavailable):
            checker.is_slot_free(PRO_ID, TUESDAY, "10:00", 50)
