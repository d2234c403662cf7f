# enrolment_waitlist/api/v1/api.py

from fastapi import APIRouter
from enrolment_waitlist.api.v1.endpoints import (
    enrolment_waitlist,
    waitlist_respond,
    internals,
)

# This is the main router for the v1 API.
api_router = APIRouter()

api_router.include_router(enrolment_waitlist.router)
api_router.include_router(waitlist_respond.router)
api_router.include_router(internals.router)
