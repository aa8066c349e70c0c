"""Tests for the session room controller."""

import pytest
import pytest_asyncio

from app.domain.scheduling.room_service import RoomController, room_name_for
from app.domain.scheduling.schemas import AppointmentStatus, CreateAppointmentRequest, RoomStatus
from app.domain.scheduling.service import AppointmentLifecycleService
from app.shared.errors import PolicyViolation, Unauthorized

from .conftest import PRO_ID, TUESDAY, local


@pytest.fixture
def engine(store, publisher, clock):
    return AppointmentLifecycleService(store, publisher, clock=clock)


@pytest.fixture
def rooms(store, publisher, clock):
    return RoomController(store, publisher, clock=clock)


@pytest_asyncio.fixture
async def confirmed(engine, professional, patient, pro):
    """Tuesday 10:00 for 50 minutes; the room window is 09:45 to 11:20"""
    appointment = await engine.create_appointment(
        patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="10:00")
    )
    return await engine.change_status(pro, appointment.id, AppointmentStatus.CONFIRMED)


class TestRoomName:
    def test_stable_and_prefixed(self):
        name = room_name_for("apt_123")
        assert name == room_name_for("apt_123")
        assert name.startswith("SW-")
        assert name[3:].isalnum()
        assert len(name) <= 27

    def test_distinct_per_appointment(self):
        assert room_name_for("apt_aaaaaaaa") != room_name_for("apt_bbbbbbbb")


class TestOpenRoom:
    """Tests for the professional opening the room"""

    @pytest.mark.asyncio
    async def test_open_inside_the_window(self, rooms, confirmed, pro, clock, publisher):
        clock.now = local(TUESDAY, 9, 50)

        info = await rooms.open_room(pro, confirmed.id)

        assert info.roomStatus == RoomStatus.OPEN
        assert info.isModerator is True
        assert info.roomName == room_name_for(confirmed.id)
        assert info.url.endswith(f"/{info.roomName}")
        room_event = publisher.events[-1]
        assert room_event.type.value == "room_opened"
        assert room_event.recipient_id == "patient_juan"
        assert room_event.payload["roomUrl"] == info.url

    @pytest.mark.asyncio
    async def test_too_early(self, rooms, confirmed, pro, clock):
        clock.now = local(TUESDAY, 9, 30)
        with pytest.raises(PolicyViolation) as exc_info:
            await rooms.open_room(pro, confirmed.id)
        assert exc_info.value.details["minutesUntilOpen"] == 15

    @pytest.mark.asyncio
    async def test_too_late(self, rooms, confirmed, pro, clock):
        clock.now = local(TUESDAY, 11, 21)
        with pytest.raises(PolicyViolation):
            await rooms.open_room(pro, confirmed.id)

    @pytest.mark.asyncio
    async def test_only_confirmed_appointments(self, engine, rooms, professional, patient, pro, clock):
        pending = await engine.create_appointment(
            patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="11:00")
        )
        clock.now = local(TUESDAY, 11, 0)
        with pytest.raises(PolicyViolation):
            await rooms.open_room(pro, pending.id)

    @pytest.mark.asyncio
    async def test_patient_cannot_open(self, rooms, confirmed, patient, clock):
        clock.now = local(TUESDAY, 10, 0)
        with pytest.raises(Unauthorized):
            await rooms.open_room(patient, confirmed.id)

    @pytest.mark.asyncio
    async def test_cannot_open_twice(self, rooms, confirmed, pro, clock):
        clock.now = local(TUESDAY, 10, 0)
        await rooms.open_room(pro, confirmed.id)
        with pytest.raises(PolicyViolation):
            await rooms.open_room(pro, confirmed.id)


class TestJoinAndEnd:
    """Tests for joining and ending the session"""

    @pytest.mark.asyncio
    async def test_patient_waits_for_the_professional(self, rooms, confirmed, patient, clock):
        clock.now = local(TUESDAY, 10, 0)
        with pytest.raises(PolicyViolation):
            await rooms.join_meeting(patient, confirmed.id)

    @pytest.mark.asyncio
    async def test_both_joined_means_in_progress(self, rooms, engine, confirmed, patient, pro, clock):
        clock.now = local(TUESDAY, 9, 55)
        await rooms.open_room(pro, confirmed.id)
        clock.now = local(TUESDAY, 10, 2)

        info = await rooms.join_meeting(patient, confirmed.id)

        assert info.isModerator is False
        assert info.roomStatus == RoomStatus.IN_PROGRESS
        stored = engine.get_appointment(patient, confirmed.id)
        assert stored.patient_joined_at == clock.now
        assert stored.meeting_room_id == info.roomName

    @pytest.mark.asyncio
    async def test_patient_outside_the_window(self, rooms, confirmed, patient, pro, clock):
        clock.now = local(TUESDAY, 10, 0)
        await rooms.open_room(pro, confirmed.id)
        clock.now = local(TUESDAY, 11, 25)
        with pytest.raises(PolicyViolation):
            await rooms.join_meeting(patient, confirmed.id)

    @pytest.mark.asyncio
    async def test_strangers_cannot_join(self, rooms, confirmed, other_patient, pro, clock):
        clock.now = local(TUESDAY, 10, 0)
        await rooms.open_room(pro, confirmed.id)
        with pytest.raises(Unauthorized):
            await rooms.join_meeting(other_patient, confirmed.id)

    @pytest.mark.asyncio
    async def test_end_completes_the_appointment(self, rooms, confirmed, patient, pro, clock, publisher):
        clock.now = local(TUESDAY, 10, 0)
        await rooms.open_room(pro, confirmed.id)
        await rooms.join_meeting(patient, confirmed.id)
        clock.now = local(TUESDAY, 10, 50)

        ended = await rooms.end_room(pro, confirmed.id)

        assert ended.status == AppointmentStatus.COMPLETED
        assert ended.room_status == RoomStatus.ENDED
        assert publisher.types_for("patient_juan")[-1] == "appointment_completed"

        with pytest.raises(PolicyViolation):
            await rooms.join_meeting(patient, confirmed.id)

    @pytest.mark.asyncio
    async def test_cannot_end_a_room_that_never_opened(self, rooms, confirmed, pro, clock):
        clock.now = local(TUESDAY, 10, 0)
        with pytest.raises(PolicyViolation):
            await rooms.end_room(pro, confirmed.id)
