"""
Appointment emails through Resend
MJML layouts from email_templates are compiled to HTML before sending
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import appointment_notification_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfigured(Exception):
    """RESEND_API_KEY is missing"""


class EmailDeliveryError(Exception):
    """Rendering or Resend failed for one message"""


def compile_mjml_to_html(mjml_content: str) -> str:
    try:
        result = mjml_to_html(mjml_content)
    except Exception as e:
        logger.error(f"❌ MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {e}") from e

    # Older mjml releases return a dict, newer ones an object with .html / .errors
    if isinstance(result, dict):
        html, errors = result.get("html", ""), result.get("errors")
    else:
        html, errors = getattr(result, "html", ""), getattr(result, "errors", None)
    if errors:
        logger.warning(f"⚠️ MJML compilation warnings: {errors}")
    return html


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Compile ``mjml_content`` and send it through Resend.

    Raises:
        EmailNotConfigured: no API key
        EmailDeliveryError: compile or send failure
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailNotConfigured("Email service not configured")

    recipients = [to] if isinstance(to, str) else to
    html_content = compile_mjml_to_html(mjml_content)

    try:
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
    except Exception as e:
        logger.error(f"❌ Resend rejected email to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {e}") from e

    logger.info(f"📧 Email '{subject}' sent to {recipients}")
    return response


async def send_appointment_email(
    to: str,
    recipient_name: Optional[str],
    title: str,
    message: str,
    payload: dict,
    action_url: Optional[str] = None,
) -> dict:
    """Email counterpart of an in-app appointment notification"""
    mjml_content = appointment_notification_template(
        recipient_name=recipient_name,
        title=title,
        message=message,
        payload=payload,
        cta_url=action_url,
        cta_label="View appointment" if action_url else None,
    )
    return await send_email(to=to, subject=f"{title} - SmartWell", mjml_content=mjml_content)
