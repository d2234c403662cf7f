# enrolment_waitlist/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from enrolment_waitlist import scheduler
from enrolment_waitlist.api.v1.api import api_router
from enrolment_waitlist.core.config import settings
from enrolment_waitlist.core.kafka_producer import close_kafka_producer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Enrolment waitlist service starting up")
    if settings.SCHEDULER_ENABLED:
        scheduler.init_scheduler()
    yield
    logger.info("Enrolment waitlist service shutting down")
    scheduler.shutdown_scheduler()
    close_kafka_producer()


app = FastAPI(
    title="LessonLoop Enrolment Waitlist Service",
    version="1.0.0",
    description="""
        **Enrolment waiting list and slot offers**

        ## Features

        * **Queues**: one ordered waiting list per organisation and instrument
        * **Slot offers**: time-bounded offers with emailed accept/decline links
        * **Conversion**: accepted entries become students with a primary-payer guardian
        * **Expiry sweep**: stale offers and aged entries expire in the background
        * **Multi-tenant**: Organization-scoped data isolation

        ## Authentication

        Admin endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        The `/enrolment-waitlist/respond` link is public and authenticated by its signed token.
        """,
    lifespan=lifespan,
)

origins = [
    settings.FRONTEND_URL,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {
        "status": "Enrolment Waitlist Service is running",
        "scheduler": scheduler.get_scheduler_status()["status"],
    }
