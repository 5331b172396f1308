from datetime import datetime, timezone

from sqlmodel import SQLModel, create_engine, Session
from crm.config import settings

# The URL comes from settings, so switching to Postgres is an env var change.
connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
engine = create_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO, connect_args=connect_args)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def create_db_and_tables():
    SQLModel.metadata.create_all(engine)

def get_session():
    with Session(engine) as session:
        yield session
