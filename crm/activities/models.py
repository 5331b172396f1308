from typing import Optional, TYPE_CHECKING
from sqlmodel import SQLModel, Field, Relationship, Column, JSON
import uuid
from datetime import datetime, timezone
from enum import Enum

if TYPE_CHECKING:
    from crm.users.models import User
    from crm.leads.models import Lead

class ActivityType(str, Enum):
    NOTE = "NOTE"
    CALL = "CALL"
    MEETING = "MEETING"
    EMAIL = "EMAIL"
    INVOICE = "INVOICE"
    TASK = "TASK"

class LeadActivity(SQLModel, table=True):
    """One row per activity; `type` says which shape `meta` has."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    lead_id: uuid.UUID = Field(foreign_key="lead.id", index=True)
    created_by_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    type: ActivityType = Field(index=True)

    title: str
    description: Optional[str] = None
    meta: dict = Field(default_factory=dict, sa_column=Column(JSON))

    scheduled_at: Optional[datetime] = Field(default=None, index=True)
    location: Optional[str] = None
    is_completed: bool = Field(default=False)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    lead: "Lead" = Relationship(back_populates="activities")
    created_by: "User" = Relationship()
