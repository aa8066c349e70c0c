import logging
from typing import Optional

import firebase_admin
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions

from .config import FIREBASE_PROJECT_ID
from .dependencies import get_document_store
from .document_store import DocumentStore
from .domain.scheduling.repository import ProfessionalRepository
from .domain.scheduling.schemas import Caller, CallerRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def init_firebase() -> None:
    """Initialize Firebase Admin SDK (only once)"""
    try:
        firebase_admin.get_app()
    except ValueError:
        try:
            # Try to initialize with default credentials
            cred = credentials.ApplicationDefault()
            firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID})
            logger.info("Firebase Admin initialized with default credentials")
        except Exception:
            # Token verification only needs the project id
            firebase_admin.initialize_app(options={"projectId": FIREBASE_PROJECT_ID})
            logger.info("Firebase Admin initialized with project ID only")


def verify_firebase_token(token: str) -> dict:
    """Verify a Firebase ID token and return its decoded claims"""
    if not FIREBASE_PROJECT_ID:
        logger.error("❌ FIREBASE_PROJECT_ID not configured")
        raise HTTPException(status_code=500, detail="Firebase not configured")

    init_firebase()
    try:
        return firebase_auth.verify_id_token(token)
    except (firebase_auth.ExpiredIdTokenError, firebase_auth.RevokedIdTokenError) as e:
        logger.warning(f"⚠️ Expired or revoked token: {e}")
        raise HTTPException(status_code=401, detail="Token expired, please sign in again") from e
    except (firebase_auth.InvalidIdTokenError, ValueError) as e:
        logger.warning(f"⚠️ Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token") from e
    except firebase_exceptions.FirebaseError as e:
        logger.error(f"❌ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Token verification failed") from e


async def get_current_caller(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: DocumentStore = Depends(get_document_store),
) -> Caller:
    """Authenticated caller; professionals are the uids with a professional profile"""
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = verify_firebase_token(creds.credentials)
    uid = claims.get("uid") or claims.get("user_id") or claims.get("sub")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token claims")

    role = CallerRole.PROFESSIONAL if ProfessionalRepository(store).is_professional(uid) else CallerRole.PATIENT
    logger.debug(f"✅ Authenticated {role.value} {uid}")
    return Caller(uid=uid, role=role, email=claims.get("email"), name=claims.get("name"))


async def get_current_professional(caller: Caller = Depends(get_current_caller)) -> Caller:
    if caller.role != CallerRole.PROFESSIONAL:
        raise HTTPException(status_code=403, detail="Professional account required")
    return caller
