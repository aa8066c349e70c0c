"""Tests for slot generation and the available-slots view."""

import pytest

from app.domain.scheduling.availability_service import AvailabilityService, generate_slots
from app.domain.scheduling.conflict_checker import ConflictChecker
from app.domain.scheduling.repository import AppointmentRepository, ProfessionalRepository
from app.domain.scheduling.schemas import (
    CreateAppointmentRequest,
    DayAvailability,
    TimeRange,
    WeeklyAvailability,
)
from app.domain.scheduling.service import AppointmentLifecycleService

from .conftest import PRO_ID, SUNDAY, TUESDAY, local


def day(*ranges, enabled=True) -> DayAvailability:
    return DayAvailability(enabled=enabled, ranges=[TimeRange(start=s, end=e) for s, e in ranges])


class TestGenerateSlots:
    """Tests for the pure slot generator."""

    def test_tuesday_morning_scenario(self):
        """09:00-12:00 with 50+10 minute stride yields 09:00, 10:00 and 11:00 only."""
        assert generate_slots(day((540, 720)), 50, 10) == [540, 600, 660]

    def test_disabled_day_is_empty(self):
        assert generate_slots(day((540, 720), enabled=False), 50, 10) == []

    def test_empty_and_inverted_ranges_are_skipped(self):
        assert generate_slots(day((600, 600), (700, 650)), 30, 0) == []

    def test_overlapping_ranges_give_duplicates(self):
        slots = generate_slots(day((540, 660), (540, 660)), 60, 0)
        assert slots == [540, 600, 540, 600]

    def test_unsorted_ranges_come_out_increasing(self):
        slots = generate_slots(day((840, 960), (540, 660)), 50, 10)
        assert slots == [540, 600, 840, 900]

    @pytest.mark.parametrize(
        "ranges,duration,buffer",
        [
            (((480, 720), (780, 1080)), 45, 15),
            (((540, 600),), 60, 0),
            (((420, 1320),), 25, 5),
            (((540, 700), (720, 730)), 50, 10),
        ],
    )
    def test_slots_are_strictly_increasing_and_fit_their_range(self, ranges, duration, buffer):
        slots = generate_slots(day(*ranges), duration, buffer)
        assert all(a < b for a, b in zip(slots, slots[1:]))
        for slot in slots:
            assert any(start <= slot and slot + duration <= end for start, end in ranges)

    def test_range_shorter_than_session_yields_nothing(self):
        assert generate_slots(day((540, 580)), 50, 10) == []

    def test_non_positive_duration_is_rejected(self):
        with pytest.raises(ValueError):
            generate_slots(day((540, 720)), 0, 10)


class TestAvailabilityTemplates:
    """Tests for parsing stored weekly templates."""

    def test_clock_strings_become_minutes(self):
        template = WeeklyAvailability.model_validate(
            {"tuesday": {"enabled": True, "slots": [{"start": "09:00", "end": "24:00"}]}}
        )
        ranges = template.for_date(TUESDAY).ranges
        assert (ranges[0].start, ranges[0].end) == (540, 1440)

    def test_missing_day_is_closed(self):
        template = WeeklyAvailability.model_validate({"tuesday": {"enabled": True, "slots": []}})
        assert template.for_date(SUNDAY).enabled is False


class TestAvailableSlots:
    """Tests for slots flagged against bookings and the clock."""

    def _service(self, store, clock):
        professionals = ProfessionalRepository(store)
        return AvailabilityService(professionals, ConflictChecker(AppointmentRepository(store)), clock)

    def test_all_slots_available_on_an_empty_day(self, store, clock, professional):
        response = self._service(store, clock).get_available_slots(PRO_ID, TUESDAY)
        assert [s.time for s in response.slots] == ["09:00", "10:00", "11:00"]
        assert all(s.available for s in response.slots)

    @pytest.mark.asyncio
    async def test_booked_slot_is_flagged(self, store, clock, publisher, professional, patient):
        engine = AppointmentLifecycleService(store, publisher, clock=clock)
        await engine.create_appointment(
            patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="10:00")
        )

        slots = {s.time: s for s in self._service(store, clock).get_available_slots(PRO_ID, TUESDAY).slots}
        assert slots["10:00"].booked and not slots["10:00"].available
        assert slots["09:00"].available and slots["11:00"].available

    def test_past_slots_are_flagged_on_the_same_day(self, store, clock, professional):
        clock.now = local(TUESDAY, 10, 30)
        slots = {s.time: s for s in self._service(store, clock).get_available_slots(PRO_ID, TUESDAY).slots}
        assert slots["09:00"].past and slots["10:00"].past
        assert slots["11:00"].available
