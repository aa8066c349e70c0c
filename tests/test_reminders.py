"""Tests for the reminder cron."""

from datetime import date

import pytest
import pytest_asyncio

from app.domain.scheduling.reminder_service import ReminderService
from app.domain.scheduling.schemas import AppointmentStatus, CreateAppointmentRequest
from app.domain.scheduling.service import AppointmentLifecycleService

from .conftest import PRO_ID, TUESDAY, local

MONDAY = date(2026, 3, 2)
WEDNESDAY = date(2026, 3, 4)


@pytest_asyncio.fixture
async def confirmed(store, publisher, clock, professional, patient, pro):
    engine = AppointmentLifecycleService(store, publisher, clock=clock)
    appointment = await engine.create_appointment(
        patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="10:00")
    )
    return await engine.change_status(pro, appointment.id, AppointmentStatus.CONFIRMED)


def reminders_sent(publisher):
    return [e for e in publisher.events if e.type.value == "appointment_reminder"]


class TestReminders:
    """Tests for the 24h and 1h reminder windows"""

    @pytest.mark.asyncio
    async def test_day_before_reminder_goes_to_both_parties(self, store, publisher, clock, confirmed):
        clock.now = local(MONDAY, 10, 0)

        results = await ReminderService(store, publisher, clock).send_due_reminders()

        assert results["sent24h"] == 1
        assert results["sent1h"] == 0
        assert {e.recipient_id for e in reminders_sent(publisher)} == {"patient_juan", PRO_ID}
        assert all(e.payload["hoursUntil"] == 24 for e in reminders_sent(publisher))
        assert store.get("appointments", confirmed.id)["reminders"]["sent24h"] is True

    @pytest.mark.asyncio
    async def test_each_reminder_is_sent_once(self, store, publisher, clock, confirmed):
        clock.now = local(MONDAY, 10, 0)
        service = ReminderService(store, publisher, clock)
        await service.send_due_reminders()
        clock.advance(minutes=30)

        results = await service.send_due_reminders()

        assert results["sent24h"] == 0
        assert len(reminders_sent(publisher)) == 2

    @pytest.mark.asyncio
    async def test_hour_before_reminder(self, store, publisher, clock, confirmed):
        clock.now = local(TUESDAY, 9, 0)
        results = await ReminderService(store, publisher, clock).send_due_reminders()
        assert results["sent1h"] == 1
        assert all(e.payload["hoursUntil"] == 1 for e in reminders_sent(publisher))

    @pytest.mark.asyncio
    async def test_outside_both_windows(self, store, publisher, clock, confirmed):
        clock.now = local(MONDAY, 18, 0)
        results = await ReminderService(store, publisher, clock).send_due_reminders()
        assert results == {"checked": 1, "sent24h": 0, "sent1h": 0, "errors": 0}

    @pytest.mark.asyncio
    async def test_unconfirmed_appointments_are_skipped(self, store, publisher, clock, professional, other_patient):
        engine = AppointmentLifecycleService(store, publisher, clock=clock)
        await engine.create_appointment(
            other_patient, CreateAppointmentRequest(professionalId=PRO_ID, date=TUESDAY, time="11:00")
        )
        clock.now = local(MONDAY, 11, 0)
        results = await ReminderService(store, publisher, clock).send_due_reminders()
        assert results["checked"] == 0

    @pytest.mark.asyncio
    async def test_day_before_reminder_late_at_night(self, store, publisher, clock, professional, pro):
        engine = AppointmentLifecycleService(store, publisher, clock=clock)
        late = await engine.create_appointment(
            pro,
            CreateAppointmentRequest(
                professionalId=PRO_ID, date=WEDNESDAY, time="00:10", patientId="patient_juan", patientName="Juan"
            ),
        )
        await engine.change_status(pro, late.id, AppointmentStatus.CONFIRMED)
        # 24h20m before a session two calendar days ahead
        clock.now = local(MONDAY, 23, 50)

        results = await ReminderService(store, publisher, clock).send_due_reminders()

        assert results["sent24h"] == 1
        assert store.get("bookings", late.id)["reminders"]["sent24h"] is True
