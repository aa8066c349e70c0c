"""
Payment receipt storage on Cloudflare R2.

The scheduling engine only keeps the object key (``receiptRef``); the file
itself is uploaded by the client straight to R2 with a presigned PUT URL.
"""

import logging
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import (
    R2_ACCESS_KEY_ID,
    R2_ACCOUNT_ID,
    R2_BUCKET_NAME,
    R2_SECRET_ACCESS_KEY,
    RECEIPT_UPLOAD_URL_EXPIRATION,
)
from ..shared.errors import PolicyViolation, UpstreamUnavailable

logger = logging.getLogger(__name__)

ALLOWED_RECEIPT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


def get_r2_client():
    """Get configured boto3 client for Cloudflare R2"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def generate_receipt_key(appointment_id: str, content_type: str) -> str:
    """receipts/{appointment_id}/{uuid}.{ext}"""
    extension = ALLOWED_RECEIPT_TYPES.get(content_type)
    if not extension:
        raise PolicyViolation(
            "Receipts must be an image or a PDF",
            {"allowedTypes": sorted(ALLOWED_RECEIPT_TYPES)},
        )
    return f"receipts/{appointment_id}/{uuid.uuid4().hex}.{extension}"


def generate_receipt_upload_url(key: str, content_type: str, expiration: int = RECEIPT_UPLOAD_URL_EXPIRATION) -> str:
    """Presigned PUT URL the client uploads the receipt to"""
    try:
        url = get_r2_client().generate_presigned_url(
            "put_object",
            Params={"Bucket": R2_BUCKET_NAME, "Key": key, "ContentType": content_type},
            ExpiresIn=expiration,
        )
        logger.info(f"✅ Generated receipt upload URL for key: {key}")
        return url
    except (BotoCoreError, ClientError) as e:
        logger.error(f"❌ Failed to generate upload URL for key {key}: {e}")
        raise UpstreamUnavailable("Receipt storage unavailable") from e
