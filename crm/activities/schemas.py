from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
import uuid

from crm.activities.models import ActivityType, LeadActivity
from crm.users.schemas import UserSummary
from crm.leads.schemas import LeadSummary

# ---- Per-type metadata ----

class NoteMeta(BaseModel):
    attachment_url: Optional[str] = None
    attachment_path: Optional[str] = None
    attachment_name: Optional[str] = None

class CallMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    phone_number: Optional[str] = None
    duration_minutes: Optional[int] = None
    outcome: Optional[str] = None

class MeetingMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    attendees: List[str] = []
    meeting_link: Optional[str] = None
    end_at: Optional[datetime] = None

class EmailStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"

class EmailMeta(BaseModel):
    status: EmailStatus = EmailStatus.DRAFT
    from_label: Optional[str] = None
    to: Optional[str] = None
    cc: Optional[str] = None
    bcc: Optional[str] = None
    reply_to: Optional[str] = None
    message_body: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_path: Optional[str] = None
    attachment_name: Optional[str] = None
    sent_at: Optional[datetime] = None

class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"

class InvoiceItem(BaseModel):
    description: str = ""
    quantity: float = 1
    price: float = 0

class InvoiceMeta(BaseModel):
    status: InvoiceStatus = InvoiceStatus.DRAFT
    items: List[InvoiceItem] = []
    notes: str = ""
    billed_by: str = ""
    billed_to: str = ""
    subtotal: float = 0
    tax: float = 0
    total_amount: float = 0
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None

class TaskMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

# ---- Read models: one variant per activity type ----

class ActivityReadBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    lead_id: uuid.UUID
    created_by_id: uuid.UUID
    title: str
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    location: Optional[str] = None
    is_completed: bool = False
    created_at: datetime
    updated_at: datetime
    created_by: Optional[UserSummary] = None
    lead: Optional[LeadSummary] = None

    @field_validator("meta", mode="before", check_fields=False)
    @classmethod
    def empty_meta(cls, value: Any) -> Any:
        return value or {}

class NoteRead(ActivityReadBase):
    type: Literal[ActivityType.NOTE]
    meta: NoteMeta = NoteMeta()

class CallRead(ActivityReadBase):
    type: Literal[ActivityType.CALL]
    meta: CallMeta = CallMeta()

class MeetingRead(ActivityReadBase):
    type: Literal[ActivityType.MEETING]
    meta: MeetingMeta = MeetingMeta()

class EmailRead(ActivityReadBase):
    type: Literal[ActivityType.EMAIL]
    meta: EmailMeta = EmailMeta()

class InvoiceRead(ActivityReadBase):
    type: Literal[ActivityType.INVOICE]
    meta: InvoiceMeta = InvoiceMeta()

class TaskRead(ActivityReadBase):
    type: Literal[ActivityType.TASK]
    meta: TaskMeta = TaskMeta()

ActivityRead = Annotated[
    Union[NoteRead, CallRead, MeetingRead, EmailRead, InvoiceRead, TaskRead],
    Field(discriminator="type"),
]

READ_MODELS = {
    ActivityType.NOTE: NoteRead,
    ActivityType.CALL: CallRead,
    ActivityType.MEETING: MeetingRead,
    ActivityType.EMAIL: EmailRead,
    ActivityType.INVOICE: InvoiceRead,
    ActivityType.TASK: TaskRead,
}

def to_activity_read(activity: LeadActivity, include_lead: bool = False) -> ActivityReadBase:
    read = READ_MODELS[activity.type].model_validate(activity, from_attributes=True)
    if not include_lead:
        read.lead = None
    return read

# ---- Request bodies ----

META_MODELS = {
    ActivityType.NOTE: NoteMeta,
    ActivityType.CALL: CallMeta,
    ActivityType.MEETING: MeetingMeta,
    ActivityType.EMAIL: EmailMeta,
    ActivityType.INVOICE: InvoiceMeta,
    ActivityType.TASK: TaskMeta,
}

class ActivityCreate(BaseModel):
    type: ActivityType
    title: Optional[str] = None
    # Older clients send the title as 'content'
    content: Optional[str] = None
    description: Optional[str] = None
    meta: Dict[str, Any] = {}
    scheduled_at: Optional[datetime] = None
    location: Optional[str] = None
    is_completed: bool = False

    @model_validator(mode="after")
    def check_title_and_meta(self) -> "ActivityCreate":
        if not (self.title or self.content):
            raise ValueError("Title (content) is required")
        if self.description is None and isinstance(self.meta.get("description"), str):
            self.description = self.meta["description"]
        try:
            meta = META_MODELS[self.type].model_validate(self.meta)
        except ValidationError as exc:
            raise ValueError(f"Invalid meta for {self.type.value}: {exc.errors()[0]['msg']}")
        self.meta = meta.model_dump(mode="json")
        return self

class CallCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    is_completed: bool = False
    meta: CallMeta = CallMeta()

class CallUpdate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    is_completed: Optional[bool] = None
    meta: Optional[CallMeta] = None

class MeetingCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    location: Optional[str] = None
    is_completed: bool = False
    meta: MeetingMeta = MeetingMeta()

class MeetingUpdate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    location: Optional[str] = None
    is_completed: Optional[bool] = None
    meta: Optional[MeetingMeta] = None

class InvoiceFields(BaseModel):
    """Invoice details as sent by clients; every field optional so updates can merge."""

    status: Optional[InvoiceStatus] = None
    items: Optional[List[InvoiceItem]] = None
    notes: Optional[str] = None
    billed_by: Optional[str] = None
    billed_to: Optional[str] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total_amount: Optional[float] = None
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None

class InvoicePayload(InvoiceFields):
    """Fields may come nested under 'meta' or at the root of the body."""

    title: Optional[str] = None
    meta: Optional[InvoiceFields] = None

    def invoice_fields(self) -> InvoiceFields:
        if self.meta is not None:
            return self.meta
        return InvoiceFields.model_validate(self.model_dump(exclude={"title", "meta"}, exclude_unset=True))

class EmailForm(BaseModel):
    """Fields of the multipart email form. On update every field is optional."""

    to: Optional[str] = None
    cc: Optional[str] = None
    bcc: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    reply_to: Optional[str] = None
    is_draft: Optional[bool] = None
