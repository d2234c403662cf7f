# enrolment_waitlist/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from enrolment_waitlist.core.config import settings

# The engine owns connection pooling for the whole process.
connect_args = (
    {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
)
engine = create_engine(
    settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
)

# One Session per request or per background job run.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always release the connection, even when the endpoint raised.
        db.close()
