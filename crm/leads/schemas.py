from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
import uuid
from typing import Optional, List, Dict
from crm.leads.models import LeadStatus, LeadPriority
from crm.users.schemas import UserSummary

class LeadContact(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None

class LeadBase(BaseModel):
    title: str = Field(min_length=1)
    company: Optional[str] = None
    description: Optional[str] = None
    contacts: List[LeadContact] = []
    email: Optional[str] = None
    phone: Optional[str] = None
    value: float = 0
    currency: str = "IDR"
    status: LeadStatus = LeadStatus.LEAD_IN
    priority: LeadPriority = LeadPriority.MEDIUM
    source_origin: Optional[str] = None
    due_date: Optional[datetime] = None

class LeadCreate(LeadBase):
    assigned_user_ids: Optional[List[uuid.UUID]] = None

class LeadUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = None
    description: Optional[str] = None
    contacts: Optional[List[LeadContact]] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    value: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[LeadStatus] = None
    priority: Optional[LeadPriority] = None
    source_origin: Optional[str] = None
    due_date: Optional[datetime] = None
    is_archived: Optional[bool] = None
    # Replaces the whole assignment set when present
    assigned_user_ids: Optional[List[uuid.UUID]] = None

class LeadRead(LeadBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    won_at: Optional[datetime] = None
    lost_at: Optional[datetime] = None
    is_archived: bool
    created_by_id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    created_by: Optional[UserSummary] = None
    assigned_users: List[UserSummary] = []

class LeadSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    company: Optional[str] = None

class StatusStat(BaseModel):
    status: LeadStatus
    count: int
    total_value: float

class LeadsByStatus(BaseModel):
    grouped: Dict[LeadStatus, List[LeadRead]]
    stats: List[StatusStat]
