from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship, Column, JSON
import uuid
from datetime import datetime, timezone
from enum import Enum

# Importing the link model directly is safe: crm.leads.models only imports
# crm.users.models inside TYPE_CHECKING blocks.
from crm.leads.models import LeadAssignment, Lead

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    SALES = "SALES"
    VIEWER = "VIEWER"

class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class User(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)

    # Google-only accounts have no password
    hashed_password: Optional[str] = None

    phone: Optional[str] = None
    role: UserRole = Field(default=UserRole.VIEWER)
    status: UserStatus = Field(default=UserStatus.ACTIVE)

    # Profile
    department: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    avatar: Optional[str] = None
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    google_id: Optional[str] = Field(default=None, index=True)
    reports_to_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")

    # One-time password reset code
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    assigned_leads: List[Lead] = Relationship(back_populates="assigned_users", link_model=LeadAssignment)
