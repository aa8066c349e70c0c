"""
ARQ worker for the scheduling engine
Delivers queued notification events and runs the appointment reminder cron
"""

import logging
import os

from arq.connections import RedisSettings
from arq.cron import cron

from .database import SessionLocal
from .document_store import SqlDocumentStore

logger = logging.getLogger(__name__)

REDIS_CONN_TIMEOUT = 15
REDIS_CONN_RETRY_DELAY = 1


def get_redis_settings() -> RedisSettings:
    """REDIS_URL (redis:// or rediss://) wins over the individual REDIS_* variables"""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        settings = RedisSettings.from_dsn(redis_url)
    else:
        settings = RedisSettings(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            password=os.getenv("REDIS_PASSWORD"),
            ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
        )
    settings.conn_timeout = REDIS_CONN_TIMEOUT
    settings.conn_retry_delay = REDIS_CONN_RETRY_DELAY
    return settings


async def startup(ctx):
    ctx["store"] = SqlDocumentStore(SessionLocal)
    logger.info("🔧 Worker document store ready")


async def dispatch_notification_task(ctx, event_data: dict):
    """
    Deliver one domain event through the notification dispatcher

    Args:
        ctx: ARQ context
        event_data: DomainEvent serialized with model_dump(mode="json")

    Returns:
        dict with per-channel delivery results
    """
    from .domain.scheduling.events import DomainEvent
    from .services.notification_service import NotificationDispatcher

    event = DomainEvent.model_validate(event_data)
    store = ctx.get("store") or SqlDocumentStore(SessionLocal)
    result = await NotificationDispatcher(store).dispatch(event)
    logger.info(f"📬 {event.type.value} for appointment {event.appointment_id}: {result}")
    return result


async def appointment_reminders_task(ctx):
    """
    Cron job every 30 minutes: 24h and 1h reminders for confirmed appointments.
    """
    from .domain.scheduling.events import ArqEventPublisher
    from .domain.scheduling.reminder_service import ReminderService

    store = ctx.get("store") or SqlDocumentStore(SessionLocal)
    # Reuse the worker's own Redis connection for the reminder events
    publisher = ArqEventPublisher(pool=ctx.get("redis"))
    try:
        return await ReminderService(store, publisher).send_due_reminders()
    finally:
        await publisher.drain()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [dispatch_notification_task, appointment_reminders_task]
    on_startup = startup
    redis_settings = get_redis_settings()

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "20"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "120"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "3600"))
    health_check_interval = 60
    max_tries = 3

    cron_jobs = [
        # Reminder windows are 30 minutes wide
        cron(appointment_reminders_task, minute={0, 30}, run_at_startup=False),
    ]

    logger.info(f"🔧 ARQ Worker configured: max_jobs={max_jobs}, timeout={job_timeout}s")
