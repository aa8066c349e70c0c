"""
Appointment emails in MJML.
One layout for every scheduling notification: header, message, details card and an optional button.
"""

from html import escape
from typing import Optional

# SmartWell palette
THEME = {
    "primary": "#0d9488",
    "primary_light": "#ccfbf1",
    "background": "#f1f5f9",
    "text_primary": "#0f172a",
    "text_secondary": "#475569",
    "border": "#cbd5e1",
}

LOGO_URL = "https://smartwell.app/logo.png"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Shared layout for appointment emails"""

    button = ""
    if cta_url and cta_label:
        button = f"""
            <mj-button href="{cta_url}" background-color="{THEME['primary']}" color="#ffffff"
                       border-radius="6px" font-size="15px" padding="24px 0 0 0">
              {cta_label}
            </mj-button>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{escape(title)}</mj-title>
        <mj-preview>{escape(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="Inter, Arial, sans-serif" />
          <mj-text font-size="15px" line-height="1.5" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section padding="24px 16px 8px 16px">
          <mj-column>
            <mj-image src="{LOGO_URL}" alt="SmartWell" width="120px" align="left" padding="0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" border-radius="10px" padding="28px 32px">
          <mj-column>
            <mj-text font-size="21px" font-weight="700" color="{THEME['text_primary']}" padding="0 0 12px 0">
              {escape(title)}
            </mj-text>
            {content_sections}
            {button}
          </mj-column>
        </mj-section>

        <mj-section padding="16px">
          <mj-column>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 12px 0" />
            <mj-text align="center" font-size="12px" padding="0">
              You're receiving this because you have an appointment on SmartWell.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """

def appointment_details_block(payload: dict) -> str:
    """Date / time / professional summary card"""
    rows = [
        ("Date", payload.get("appointmentDate")),
        ("Time", payload.get("appointmentTime")),
        ("Professional", payload.get("professionalName")),
        ("Service", payload.get("serviceName")),
    ]
    if payload.get("oldDate"):
        rows.insert(0, ("Previously", f"{payload['oldDate']} {payload.get('oldTime', '')}"))

    lines = "<br/>".join(
        f"<strong>{label}:</strong> {escape(str(value))}" for label, value in rows if value
    )
    return f"""
    <mj-text background-color="{THEME['primary_light']}" padding="16px 20px" color="{THEME['text_primary']}">
      {lines}
    </mj-text>
    """


def appointment_notification_template(
    recipient_name: Optional[str],
    title: str,
    message: str,
    payload: dict,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Generic appointment event email: greeting, message, details card, optional CTA"""
    greeting = f"Hi {escape(recipient_name)}," if recipient_name else "Hi,"
    content = f"""
    <mj-text>
      {greeting}
    </mj-text>

    <mj-text padding="0 0 24px 0">
      {escape(message)}
    </mj-text>

    {appointment_details_block(payload)}
    """

    return get_base_template(
        title=title,
        preview_text=message,
        content_sections=content,
        cta_url=cta_url,
        cta_label=cta_label,
    )
