"""
Notification Dispatcher
Turns scheduling events into an in-app notification plus an email, from the
same event source so both channels stay consistent
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..config import FRONTEND_URL, RESEND_API_KEY
from ..document_store import DocumentStore, Where
from ..domain.scheduling.events import DomainEvent, NotificationType
from ..domain.scheduling.time_calculator import utc_now
from ..email_service import send_appointment_email
from ..shared.errors import NotFound, SchedulingError

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"

TITLES = {
    NotificationType.APPOINTMENT_BOOKED: "📅 New appointment booked",
    NotificationType.APPOINTMENT_CONFIRMED: "✅ Appointment confirmed",
    NotificationType.APPOINTMENT_CANCELLED: "❌ Appointment cancelled",
    NotificationType.APPOINTMENT_RESCHEDULED: "🔄 Appointment rescheduled",
    NotificationType.APPOINTMENT_COMPLETED: "🏁 Session completed",
    NotificationType.APPOINTMENT_REMINDER: "⏰ Appointment reminder",
    NotificationType.PAYMENT_UPLOADED: "🧾 Payment receipt uploaded",
    NotificationType.PAYMENT_RECEIVED: "💳 Payment approved",
    NotificationType.PAYMENT_REJECTED: "⚠️ Payment rejected",
    NotificationType.ROOM_OPENED: "🎥 Your session room is open",
    NotificationType.REVIEW_RECEIVED: "⭐ New review",
}


def render_message(notification_type: NotificationType, payload: dict) -> str:
    when = f"{payload.get('appointmentDate')} at {payload.get('appointmentTime')}"
    professional = payload.get("professionalName") or "your professional"
    patient = payload.get("patientName") or "A patient"

    if notification_type == NotificationType.APPOINTMENT_BOOKED:
        return f"{patient} booked a session for {when}."
    if notification_type == NotificationType.APPOINTMENT_CONFIRMED:
        return f"Your session with {professional} on {when} is confirmed."
    if notification_type == NotificationType.APPOINTMENT_CANCELLED:
        reason = payload.get("reason")
        return f"The session on {when} was cancelled." + (f" Reason: {reason}" if reason else "")
    if notification_type == NotificationType.APPOINTMENT_RESCHEDULED:
        return (
            f"The session on {payload.get('oldDate')} at {payload.get('oldTime')} "
            f"was moved to {when}."
        )
    if notification_type == NotificationType.APPOINTMENT_COMPLETED:
        return f"Your session with {professional} on {when} has ended."
    if notification_type == NotificationType.APPOINTMENT_REMINDER:
        if payload.get("hoursUntil") == 1:
            return f"Your session on {when} starts in 1 hour."
        return f"Your session is tomorrow, {when}."
    if notification_type == NotificationType.PAYMENT_UPLOADED:
        return f"{patient} uploaded a payment receipt for the session on {when}. Please review it."
    if notification_type == NotificationType.PAYMENT_RECEIVED:
        return f"Your payment was approved. The session on {when} is confirmed."
    if notification_type == NotificationType.PAYMENT_REJECTED:
        reason = payload.get("rejectionReason")
        return f"Your payment for {when} could not be verified." + (f" Reason: {reason}" if reason else "")
    if notification_type == NotificationType.ROOM_OPENED:
        return f"{professional} opened the session room. You can join now."
    if notification_type == NotificationType.REVIEW_RECEIVED:
        return f"{patient} rated the session on {when} with {payload.get('rating')} stars."
    return f"Update on your session on {when}."


EmailSender = Callable[..., Awaitable[dict]]


class NotificationDispatcher:
    """
    ``notify(user_id, type, payload)`` stores an in-app notification and
    emails the recipient when an address is known. Each channel fails on its
    own and never raises to the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        email_sender: Optional[EmailSender] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        if email_sender is None and RESEND_API_KEY:
            email_sender = send_appointment_email
        self.email_sender = email_sender
        self.clock = clock

    async def notify(
        self,
        user_id: Optional[str],
        notification_type: NotificationType,
        payload: dict,
        email: Optional[str] = None,
        name: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> dict:
        result = {"in_app": False, "email_sent": False, "email_error": None}
        title = TITLES.get(notification_type, "SmartWell")
        message = render_message(notification_type, payload)
        action_url = f"{FRONTEND_URL}/appointments/{appointment_id}" if appointment_id else None

        if user_id:
            try:
                self.store.create(
                    NOTIFICATIONS,
                    {
                        "userId": user_id,
                        "type": notification_type.value,
                        "title": title,
                        "message": message,
                        "read": False,
                        "appointmentId": appointment_id,
                        "actionUrl": action_url,
                        "metadata": payload,
                        "createdAt": self.clock().isoformat(),
                    },
                )
                result["in_app"] = True
            except SchedulingError as e:
                logger.error(f"❌ Failed to store {notification_type.value} notification for {user_id}: {e}")

        if email and self.email_sender:
            try:
                await self.email_sender(
                    to=email,
                    recipient_name=name,
                    title=title,
                    message=message,
                    payload=payload,
                    action_url=action_url,
                )
                result["email_sent"] = True
            except Exception as e:
                result["email_error"] = str(e)
                logger.error(f"❌ Failed to send {notification_type.value} email to {email}: {e}")
        elif not email:
            logger.debug(f"⚠️ No email address for {notification_type.value} notification")

        return result

    async def dispatch(self, event: DomainEvent) -> dict:
        return await self.notify(
            event.recipient_id,
            event.type,
            event.payload,
            email=event.recipient_email,
            name=event.recipient_name,
            appointment_id=event.appointment_id,
        )

    # ========================================================================
    # IN-APP INBOX
    # ========================================================================

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[dict]:
        predicates = [Where("userId", "==", user_id)]
        if unread_only:
            predicates.append(Where("read", "==", False))
        notifications = self.store.query(NOTIFICATIONS, predicates)
        notifications.sort(key=lambda n: n.get("createdAt") or "", reverse=True)
        return notifications[:limit]

    def mark_read(self, user_id: str, notification_id: str) -> dict:
        notification = self.store.get(NOTIFICATIONS, notification_id)
        # Someone else's notification is reported as missing
        if not notification or notification.get("userId") != user_id:
            raise NotFound("Notification not found")
        return self.store.update(NOTIFICATIONS, notification_id, {"read": True, "readAt": self.clock().isoformat()})

    def mark_all_read(self, user_id: str) -> int:
        unread = self.list_for_user(user_id, unread_only=True, limit=1000)
        now = self.clock().isoformat()
        for notification in unread:
            self.store.update(NOTIFICATIONS, notification["id"], {"read": True, "readAt": now})
        logger.info(f"✅ Marked {len(unread)} notifications read for {user_id}")
        return len(unread)
