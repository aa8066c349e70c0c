"""
Domain events emitted after committed scheduling transitions.

The engine never talks to notification channels directly: it publishes an
event, the arq worker consumes it and calls the notification dispatcher.
A slow or failing channel therefore never blocks or reverts a transition.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from arq import create_pool
from pydantic import BaseModel, Field

from .time_calculator import utc_now

logger = logging.getLogger(__name__)

DISPATCH_TASK = "dispatch_notification_task"
PUBLISH_CONN_TIMEOUT = 2
REDIS_BACKOFF_SECONDS = 30.0


class NotificationType(str, Enum):
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_REMINDER = "appointment_reminder"
    PAYMENT_UPLOADED = "payment_uploaded"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REJECTED = "payment_rejected"
    ROOM_OPENED = "room_opened"
    REVIEW_RECEIVED = "review_received"


class DomainEvent(BaseModel):
    type: NotificationType
    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    appointment_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Hand the event off; must not raise for channel failures"""

    async def drain(self) -> None:
        """Wait for hand-offs still in flight"""


class ArqEventPublisher(EventPublisher):
    """
    Queues one dispatch job per event on the arq worker.

    ``publish`` only schedules the enqueue and returns, so a slow or unreachable
    Redis never holds up the request that committed the transition. After a
    failed connection the publisher drops events for ``backoff_seconds``
    instead of reconnecting on every call.
    """

    def __init__(self, pool=None, backoff_seconds: float = REDIS_BACKOFF_SECONDS):
        self._pool = pool
        self.backoff_seconds = backoff_seconds
        self._unavailable_until = 0.0
        self._tasks: set[asyncio.Task] = set()

    async def _get_pool(self):
        if self._pool is None:
            from ...worker import get_redis_settings

            # One quick attempt per connection; the backoff covers outages
            settings = replace(get_redis_settings(), conn_timeout=PUBLISH_CONN_TIMEOUT, conn_retries=0)
            self._pool = await create_pool(settings)
        return self._pool

    async def publish(self, event: DomainEvent) -> None:
        if time.monotonic() < self._unavailable_until:
            logger.warning(f"⚠️ Redis marked unavailable, dropping {event.type.value} for {event.appointment_id}")
            return
        task = asyncio.create_task(self._enqueue(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _enqueue(self, event: DomainEvent) -> None:
        try:
            pool = await self._get_pool()
            job = await pool.enqueue_job(DISPATCH_TASK, event.model_dump(mode="json"))
            logger.info(
                f"📨 Queued {event.type.value} for appointment {event.appointment_id}: "
                f"{job.job_id if job else 'duplicate'}"
            )
        except Exception as e:
            # The transition is already committed at this point
            logger.warning(f"⚠️ Failed to queue {event.type.value} notification: {e}")
            self._pool = None
            self._unavailable_until = time.monotonic() + self.backoff_seconds

    async def drain(self) -> None:
        """Wait for enqueues still in flight (shutdown, end of a worker job)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
