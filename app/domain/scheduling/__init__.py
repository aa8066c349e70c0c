"""
Scheduling domain - availability, booking, appointment lifecycle and session rooms

Structure:
```
app/domain/scheduling/
├── schemas.py              # Appointment view, enums, request/response models
├── time_calculator.py      # HH:MM parsing, business time zone, intervals
├── repository.py           # Dual-source appointment reads/writes, professionals
├── availability_service.py # Weekly template -> slots, booked/past flags
├── conflict_checker.py     # Interval overlap against non-terminal appointments
├── service.py              # Lifecycle state machine, cancellation, reschedule, payments
├── room_service.py         # Video room state machine and time window
├── reminder_service.py     # 24h / 1h reminders (worker cron)
├── reports.py              # Monthly professional report
├── events.py               # Domain events and the arq publisher
└── router.py               # /appointments and /professionals endpoints
```

Routers are imported from ``.router`` directly; importing them here would
create an import cycle with ``app.auth``.
"""

__all__ = []
