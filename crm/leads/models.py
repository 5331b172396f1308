from typing import Optional, List, TYPE_CHECKING
from sqlmodel import SQLModel, Field, Relationship, Column, JSON
import uuid
from datetime import datetime, timezone
from enum import Enum

if TYPE_CHECKING:
    from crm.users.models import User
    from crm.activities.models import LeadActivity

class LeadStatus(str, Enum):
    LEAD_IN = "LEAD_IN"
    CONTACT_MADE = "CONTACT_MADE"
    NEEDS_DEFINED = "NEEDS_DEFINED"
    PROPOSAL_MADE = "PROPOSAL_MADE"
    NEGOTIATION_STARTED = "NEGOTIATION_STARTED"
    WON = "WON"
    LOST = "LOST"

class LeadPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

class LeadAssignment(SQLModel, table=True):
    lead_id: uuid.UUID = Field(foreign_key="lead.id", primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", primary_key=True)
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Lead(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    title: str = Field(index=True)
    company: Optional[str] = Field(default=None, index=True)
    description: Optional[str] = None
    contacts: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    email: Optional[str] = None
    phone: Optional[str] = None

    value: float = Field(default=0)
    currency: str = Field(default="IDR")
    status: LeadStatus = Field(default=LeadStatus.LEAD_IN, index=True)
    priority: LeadPriority = Field(default=LeadPriority.MEDIUM)
    source_origin: Optional[str] = None
    due_date: Optional[datetime] = None

    # Stamped once, on the first transition into WON / LOST
    won_at: Optional[datetime] = None
    lost_at: Optional[datetime] = None

    is_archived: bool = Field(default=False, index=True)

    created_by_id: uuid.UUID = Field(foreign_key="user.id")

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    created_by: Optional["User"] = Relationship()
    assigned_users: List["User"] = Relationship(back_populates="assigned_leads", link_model=LeadAssignment)
    activities: List["LeadActivity"] = Relationship(
        back_populates="lead",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
