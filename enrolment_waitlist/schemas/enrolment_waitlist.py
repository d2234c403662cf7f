# enrolment_waitlist/schemas/enrolment_waitlist.py
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, time
from enum import Enum


# --- Enums ---

class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"
    LOST = "lost"
    ENROLLED = "enrolled"


class WaitlistPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class WaitlistSource(str, Enum):
    MANUAL = "manual"
    LEAD_PIPELINE = "lead_pipeline"
    BOOKING_PAGE = "booking_page"
    PARENT_PORTAL = "parent_portal"
    WEBSITE = "website"


class OfferResponse(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# --- Request Schemas ---

class _PreferenceFields(BaseModel):
    preferred_teacher_id: Optional[str] = None
    preferred_location_id: Optional[str] = None
    preferred_days: Optional[List[Weekday]] = None
    preferred_time_earliest: Optional[time] = None
    preferred_time_latest: Optional[time] = None
    experience_level: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def _check_time_window(self):
        earliest, latest = self.preferred_time_earliest, self.preferred_time_latest
        if earliest and latest and earliest > latest:
            raise ValueError("preferred_time_earliest must not be after preferred_time_latest")
        return self


class WaitlistAddRequest(_PreferenceFields):
    contact_name: str = Field(..., max_length=200)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, max_length=50)
    guardian_id: Optional[str] = None
    lead_id: Optional[str] = None

    child_first_name: str = Field(..., max_length=100)
    child_last_name: Optional[str] = Field(None, max_length=100)
    child_age: Optional[int] = Field(None, ge=0, le=120)

    instrument_id: Optional[str] = None
    instrument_name: str = Field(..., max_length=100)
    lesson_duration_mins: int = Field(30, ge=15, le=180)

    notes: Optional[str] = Field(None, max_length=5000)
    priority: WaitlistPriority = WaitlistPriority.NORMAL
    source: WaitlistSource = WaitlistSource.MANUAL

    @field_validator("contact_name", "child_first_name", "instrument_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _strip_required(value)


class WaitlistUpdateRequest(_PreferenceFields):
    """Partial update; only fields present in the request body are applied."""
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, max_length=50)

    child_first_name: Optional[str] = Field(None, max_length=100)
    child_last_name: Optional[str] = Field(None, max_length=100)
    child_age: Optional[int] = Field(None, ge=0, le=120)

    instrument_id: Optional[str] = None
    instrument_name: Optional[str] = Field(None, max_length=100)
    lesson_duration_mins: Optional[int] = Field(None, ge=15, le=180)

    notes: Optional[str] = Field(None, max_length=5000)
    priority: Optional[WaitlistPriority] = None

    @field_validator("contact_name", "child_first_name", "instrument_name")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _strip_required(value)


class OfferSlotRequest(BaseModel):
    day: Weekday
    time: time
    teacher_id: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    rate_minor: int = Field(..., ge=0, description="Lesson rate in minor currency units")


class OfferRespondRequest(BaseModel):
    action: OfferResponse


class ConvertRequest(BaseModel):
    teacher_id: Optional[str] = None


class MarkLostRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class MoveRequest(BaseModel):
    position: int = Field(..., ge=1)


class ReorderRequest(BaseModel):
    instrument_name: str
    entry_ids: List[str] = Field(..., min_length=1)

    @field_validator("entry_ids")
    @classmethod
    def _unique_ids(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("entry_ids must not contain duplicates")
        return value


class WaitlistSettingsUpdate(BaseModel):
    offer_expiry_hours: int = Field(..., ge=1, le=720)
    waitlist_expiry_weeks: Optional[int] = Field(None, ge=1, le=520)


# --- Response Schemas ---

class WaitlistActivityResponse(BaseModel):
    id: str
    waitlist_id: str
    activity_type: str
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="activity_metadata")
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class WaitlistEntryResponse(BaseModel):
    id: str
    organization_id: str
    lead_id: Optional[str] = None

    contact_name: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    guardian_id: Optional[str] = None

    child_first_name: str
    child_last_name: Optional[str] = None
    child_age: Optional[int] = None

    instrument_id: Optional[str] = None
    instrument_name: str
    lesson_duration_mins: int

    preferred_teacher_id: Optional[str] = None
    preferred_location_id: Optional[str] = None
    preferred_days: Optional[List[str]] = None
    preferred_time_earliest: Optional[time] = None
    preferred_time_latest: Optional[time] = None
    experience_level: Optional[str] = None

    position: Optional[int] = None  # null once the entry leaves the queue
    status: str
    priority: str
    source: str

    offered_slot_day: Optional[str] = None
    offered_slot_time: Optional[time] = None
    offered_teacher_id: Optional[str] = None
    offered_location_id: Optional[str] = None
    offered_rate_minor: Optional[int] = None
    offered_at: Optional[datetime] = None
    offer_expires_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    converted_student_id: Optional[str] = None
    converted_at: Optional[datetime] = None

    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WaitlistEntryDetailResponse(BaseModel):
    entry: WaitlistEntryResponse
    activities: List[WaitlistActivityResponse]


class WaitlistEntryListResponse(BaseModel):
    waitlist_entries: List[WaitlistEntryResponse]
    count: int


class WaitlistConversionResponse(BaseModel):
    waitlist_id: str
    student_id: str
    guardian_id: str
    guardian_created: bool


class WaitlistStatsResponse(BaseModel):
    waiting: int
    offered: int
    accepted: int
    enrolled_this_term: int
    total: int


class InstrumentBreakdown(BaseModel):
    instrument_name: str
    waiting_count: int
    offered_count: int
    total: int


class OfferRespondResult(BaseModel):
    waitlist_id: str
    status: str
    already_responded: bool
    message: str


class WaitlistSettingsResponse(BaseModel):
    organization_id: str
    offer_expiry_hours: int
    waitlist_expiry_weeks: Optional[int] = None


class SweepResult(BaseModel):
    organizations_processed: int
    offers_expired: int
    waiting_expired: int
    failed_organizations: List[str] = []
