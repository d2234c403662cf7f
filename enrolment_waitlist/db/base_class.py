# enrolment_waitlist/db/base_class.py

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# Single declarative base shared by every model in the service.
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONBType = JSON().with_variant(JSONB(), "postgresql")
