from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional, List
import uuid

from crm.users.models import UserRole, UserStatus
from crm.leads.models import LeadStatus

class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: Optional[str] = None
    avatar: Optional[str] = None

class ManagerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str

class AssignedLead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    status: LeadStatus
    company: Optional[str] = None

class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus
    avatar: Optional[str] = None
    department: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    skills: List[str] = []
    joined_at: Optional[datetime] = None
    reports_to_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

class UserDetail(UserRead):
    """A user with the manager summary and the leads assigned to them."""

    reports_to: Optional[ManagerSummary] = None
    assigned_leads: List[AssignedLead] = []

class TeamMemberCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    role: UserRole
    phone: Optional[str] = None
    department: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    joined_at: Optional[datetime] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    skills: List[str] = []
    reports_to_id: Optional[uuid.UUID] = None

class TeamMemberUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None
    department: Optional[str] = None
    status: Optional[UserStatus] = None
    joined_at: Optional[datetime] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    skills: Optional[List[str]] = None
    reports_to_id: Optional[uuid.UUID] = None

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    skills: Optional[List[str]] = None

class SalesMember(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    role: UserRole
