import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Registers the documents / schedule_locks tables on Base
from . import models  # noqa: F401
from .database import Base, engine
from .dependencies import get_event_publisher
from .domain.scheduling.router import professionals_router
from .domain.scheduling.router import router as appointments_router
from .routes.notifications import router as notifications_router
from .shared.errors import SchedulingError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Quiet chatty client libraries
for noisy in ("httpx", "httpcore", "botocore", "urllib3"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 SmartWell scheduling API starting")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Document store tables ready")
    except SQLAlchemyError as e:
        # Several uvicorn workers may race on the first create_all
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("Document store tables created by another worker")
        else:
            logger.error(f"❌ Could not create document store tables: {e}")
    yield
    await get_event_publisher().drain()
    logger.info("👋 SmartWell scheduling API stopped")


app = FastAPI(title="SmartWell Scheduling API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    """Domain errors keep their status code and carry a machine-readable code"""
    if exc.status_code >= 500:
        logger.error(f"❌ {exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"⚠️ {exc.code} on {request.method} {request.url.path}: {exc.message}")
    headers = {"Retry-After": "5"} if exc.retriable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A missing Authorization header is an authentication problem, not a bad request"""
    errors = exc.errors()
    if any("authorization" in str(error.get("loc", "")).lower() for error in errors):
        logger.warning(f"🔒 Missing Authorization header on {request.url.path}")
        return JSONResponse(
            status_code=401,
            content={"detail": "Not authenticated", "code": "not_authenticated"},
        )

    logger.warning(f"⚠️ Invalid request to {request.url.path}: {len(errors)} errors")
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(errors), "code": "validation_error"},
    )


ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "https://smartwell.app,https://www.smartwell.app,http://localhost:3000",
    ).split(",")
    if origin.strip()
]
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(professionals_router)
app.include_router(appointments_router)
app.include_router(notifications_router)


@app.get("/")
def root():
    return {"message": "SmartWell Scheduling API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
