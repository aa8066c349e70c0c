import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./smartwell.db")

# Firebase Configuration (identity provider)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Cloudflare R2 Configuration (payment receipts)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "smartwell-receipts")
RECEIPT_UPLOAD_URL_EXPIRATION = int(os.getenv("RECEIPT_UPLOAD_URL_EXPIRATION", "900"))

# Frontend base URL for links in notifications
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "SmartWell <turnos@smartwell.app>")

# Video sessions
JITSI_DOMAIN = os.getenv("JITSI_DOMAIN", "meet.jit.si")

# Scheduling policy
# All civil dates/times on appointments are interpreted in this zone
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/Argentina/Buenos_Aires")
CANCELLATION_NOTICE_HOURS = int(os.getenv("CANCELLATION_NOTICE_HOURS", "24"))
# Rejections at or above this count auto-cancel the appointment
PAYMENT_REJECTION_THRESHOLD = int(os.getenv("PAYMENT_REJECTION_THRESHOLD", "2"))
ROOM_OPEN_LEAD_MINUTES = int(os.getenv("ROOM_OPEN_LEAD_MINUTES", "15"))
ROOM_CLOSE_GRACE_MINUTES = int(os.getenv("ROOM_CLOSE_GRACE_MINUTES", "30"))
DEFAULT_SESSION_DURATION = int(os.getenv("DEFAULT_SESSION_DURATION", "50"))
DEFAULT_BUFFER_MINUTES = int(os.getenv("DEFAULT_BUFFER_MINUTES", "10"))
