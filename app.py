"""
MedRemind Backend
FastAPI application hosting the reminder scheduling pipeline.

Startup creates the tables, starts the delayed job queue and re-primes it
for the upcoming horizon; shutdown stops the queue without waiting for jobs.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configuration and database
from config import settings
from database import init_db, DatabaseHealthCheck

from api import include_routers
from api.deps import status_code_for
from actions.job_queue import job_queue
from actions.reminder_engine import reminder_engine
from services.errors import ReminderError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then bring the reminder queue up (and down on exit)"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENV})")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    if settings.SCHEDULER_ENABLED:
        job_queue.start()
        primed = await reminder_engine.initialize()
        logger.info(f"Job queue running, {primed} reminders primed")
    else:
        logger.info("Scheduler disabled, reminders will not fire in this process")

    yield

    job_queue.shutdown()
    logger.info(f"{settings.APP_NAME} stopped")


# ==================== APP INITIALIZATION ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## MedRemind API

    Medicine-adherence reminders with missed-dose escalation.

    ### Features
    - **Durable scheduling**: reminders fire at their exact time and survive restarts
    - **Missed-dose escalation**: unanswered reminders become missed and alert a guardian once
    - **Recurring series**: daily, weekly, monthly and custom repeats
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

include_routers(app, prefix=settings.API_PREFIX)


# ==================== EXCEPTION HANDLERS ====================

def error_response(status_code: int, message) -> JSONResponse:
    """Uniform JSON error envelope"""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": message,
            "status_code": status_code,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return error_response(exc.status_code, exc.detail)


@app.exception_handler(ReminderError)
async def reminder_error_handler(request, exc: ReminderError):
    # service errors that a route did not translate itself
    return error_response(status_code_for(exc), str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return error_response(500, str(exc) if settings.DEBUG else "An unexpected error occurred")


# ==================== HEALTH ENDPOINTS ====================

@app.get("/", tags=["Health"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Database connectivity plus the state of the reminder queue"""
    db_connected = DatabaseHealthCheck.is_connected()
    queue = reminder_engine.queue_status()
    queue_ok = queue["running"] or not settings.SCHEDULER_ENABLED

    return {
        "status": "healthy" if db_connected and queue_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {
            "database": {
                "status": "up" if db_connected else "down",
                "backend": settings.DATABASE_URL.split(":", 1)[0]
            },
            "scheduler": {
                "enabled": settings.SCHEDULER_ENABLED,
                **queue
            }
        },
        "reminders": {
            "missed_dose_grace_minutes": settings.MISSED_DOSE_GRACE_MINUTES,
            "prime_horizon_hours": settings.PRIME_HORIZON_HOURS
        },
        "version": settings.APP_VERSION
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
