import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlmodel import Session
from typing import List, Optional
import uuid

from crm.database import get_session
from crm.auth.dependencies import get_current_user
from crm.auth.schemas import CurrentUser, MessageResponse
from crm.leads.models import Lead
from crm.leads import service as lead_service
from crm.activities.models import ActivityType, LeadActivity
from crm.activities.schemas import (
    ActivityCreate,
    ActivityRead,
    CallCreate,
    CallRead,
    CallUpdate,
    EmailForm,
    EmailRead,
    InvoicePayload,
    InvoiceRead,
    MeetingCreate,
    MeetingRead,
    MeetingUpdate,
    NoteRead,
    to_activity_read,
)
from crm.activities import service, invoices
from crm.mail import EmailDeliveryError, SmtpMailer, get_mailer
from crm.storage import FileStorage, StoredFile, UploadRejected, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads/{lead_id}", tags=["activities"])
feed_router = APIRouter(prefix="/activities", tags=["activities"])

def get_parent_lead(
    lead_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Lead:
    lead = lead_service.get_lead(session, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    if not lead_service.can_access(lead, current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    return lead

def _find(session: Session, lead: Lead, activity_id: uuid.UUID, activity_type: ActivityType) -> LeadActivity:
    activity = service.get_activity(session, lead.id, activity_id, activity_type)
    if not activity:
        raise HTTPException(status_code=404, detail=f"{activity_type.value.capitalize()} not found")
    return activity

def _find_modifiable(
    session: Session, lead: Lead, activity_id: uuid.UUID, activity_type: ActivityType, current_user: CurrentUser
) -> LeadActivity:
    activity = _find(session, lead, activity_id, activity_type)
    if not service.can_modify(activity, current_user):
        raise HTTPException(status_code=403, detail="Only the creator or an admin can change this record")
    return activity

def _store(storage: FileStorage, upload: Optional[UploadFile]) -> Optional[StoredFile]:
    if upload is None or not upload.filename:
        return None
    try:
        return storage.save(upload)
    except UploadRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc))

# ---- Timeline ----

@router.get("/activities", response_model=List[ActivityRead])
def read_lead_activities(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return [to_activity_read(activity) for activity in service.get_lead_activities(session, lead.id)]

@router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_lead_activity(
    activity_create: ActivityCreate,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    activity = service.create_activity(session, lead.id, current_user.id, activity_create)
    return to_activity_read(activity)

# ---- Notes ----

@router.get("/notes", response_model=List[NoteRead])
def read_notes(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return [to_activity_read(note) for note in service.get_lead_activities(session, lead.id, ActivityType.NOTE)]

@router.post("/notes", response_model=NoteRead, status_code=status.HTTP_201_CREATED)
def create_note(
    content: str = Form(..., min_length=1),
    attachment: Optional[UploadFile] = File(None),
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    stored = _store(storage, attachment)
    return to_activity_read(service.create_note(session, lead.id, current_user.id, content, stored))

@router.get("/notes/{note_id}", response_model=NoteRead)
def read_note(note_id: uuid.UUID, lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return to_activity_read(_find(session, lead, note_id, ActivityType.NOTE))

@router.patch("/notes/{note_id}", response_model=NoteRead)
def update_note(
    note_id: uuid.UUID,
    content: str = Form(..., min_length=1),
    attachment: Optional[UploadFile] = File(None),
    remove_attachment: bool = Form(False),
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    note = _find_modifiable(session, lead, note_id, ActivityType.NOTE, current_user)
    stored = _store(storage, attachment)
    note = service.update_note(session, note, content, storage, stored, remove_attachment)
    return to_activity_read(note)

@router.delete("/notes/{note_id}", response_model=MessageResponse)
def delete_note(
    note_id: uuid.UUID,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    note = _find_modifiable(session, lead, note_id, ActivityType.NOTE, current_user)
    service.delete_activity(session, note, storage)
    return MessageResponse(message="Note deleted successfully")

# ---- Calls ----

@router.get("/calls", response_model=List[CallRead])
def read_calls(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return [to_activity_read(call) for call in service.get_lead_activities(session, lead.id, ActivityType.CALL)]

@router.post("/calls", response_model=CallRead, status_code=status.HTTP_201_CREATED)
def create_call(
    call_create: CallCreate,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    call = service.create_scheduled(session, lead.id, current_user.id, ActivityType.CALL, call_create)
    return to_activity_read(call)

@router.get("/calls/{call_id}", response_model=CallRead)
def read_call(call_id: uuid.UUID, lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return to_activity_read(_find(session, lead, call_id, ActivityType.CALL))

@router.patch("/calls/{call_id}", response_model=CallRead)
def update_call(
    call_id: uuid.UUID,
    call_update: CallUpdate,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    call = _find_modifiable(session, lead, call_id, ActivityType.CALL, current_user)
    return to_activity_read(service.update_scheduled(session, call, call_update))

@router.delete("/calls/{call_id}", response_model=MessageResponse)
def delete_call(
    call_id: uuid.UUID,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    call = _find_modifiable(session, lead, call_id, ActivityType.CALL, current_user)
    service.delete_activity(session, call, storage)
    return MessageResponse(message="Call deleted successfully")

# ---- Meetings ----

@router.get("/meetings", response_model=List[MeetingRead])
def read_meetings(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    meetings = service.get_lead_activities(session, lead.id, ActivityType.MEETING)
    return [to_activity_read(meeting) for meeting in meetings]

@router.post("/meetings", response_model=MeetingRead, status_code=status.HTTP_201_CREATED)
def create_meeting(
    meeting_create: MeetingCreate,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    meeting = service.create_scheduled(session, lead.id, current_user.id, ActivityType.MEETING, meeting_create)
    return to_activity_read(meeting)

@router.get("/meetings/{meeting_id}", response_model=MeetingRead)
def read_meeting(meeting_id: uuid.UUID, lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return to_activity_read(_find(session, lead, meeting_id, ActivityType.MEETING))

@router.patch("/meetings/{meeting_id}", response_model=MeetingRead)
def update_meeting(
    meeting_id: uuid.UUID,
    meeting_update: MeetingUpdate,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    meeting = _find_modifiable(session, lead, meeting_id, ActivityType.MEETING, current_user)
    return to_activity_read(service.update_scheduled(session, meeting, meeting_update))

@router.delete("/meetings/{meeting_id}", response_model=MessageResponse)
def delete_meeting(
    meeting_id: uuid.UUID,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    meeting = _find_modifiable(session, lead, meeting_id, ActivityType.MEETING, current_user)
    service.delete_activity(session, meeting, storage)
    return MessageResponse(message="Meeting deleted successfully")

# ---- Emails ----

@router.get("/emails", response_model=List[EmailRead])
def read_emails(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return [to_activity_read(email) for email in service.get_lead_activities(session, lead.id, ActivityType.EMAIL)]

@router.post("/emails", response_model=EmailRead, status_code=status.HTTP_201_CREATED)
def create_email(
    to: str = Form(..., min_length=1),
    subject: str = Form(..., min_length=1),
    message: str = Form(..., min_length=1),
    cc: Optional[str] = Form(None),
    bcc: Optional[str] = Form(None),
    reply_to: Optional[str] = Form(None),
    is_draft: bool = Form(False),
    file: Optional[UploadFile] = File(None),
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    mailer: SmtpMailer = Depends(get_mailer),
    storage: FileStorage = Depends(get_storage),
):
    form = EmailForm(to=to, cc=cc, bcc=bcc, subject=subject, message=message, reply_to=reply_to, is_draft=is_draft)
    stored = _store(storage, file)
    try:
        email = service.send_email(session, lead.id, current_user, form, mailer, storage, stored)
    except EmailDeliveryError:
        logger.exception("Email to %s for lead %s was not sent", to, lead.id)
        raise HTTPException(status_code=500, detail="Failed to send email")
    return to_activity_read(email)

@router.get("/emails/{email_id}", response_model=EmailRead)
def read_email(email_id: uuid.UUID, lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return to_activity_read(_find(session, lead, email_id, ActivityType.EMAIL))

@router.patch("/emails/{email_id}", response_model=EmailRead)
def update_email(
    email_id: uuid.UUID,
    to: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    message: Optional[str] = Form(None),
    cc: Optional[str] = Form(None),
    bcc: Optional[str] = Form(None),
    reply_to: Optional[str] = Form(None),
    is_draft: Optional[bool] = Form(None),
    file: Optional[UploadFile] = File(None),
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    mailer: SmtpMailer = Depends(get_mailer),
    storage: FileStorage = Depends(get_storage),
):
    email = _find_modifiable(session, lead, email_id, ActivityType.EMAIL, current_user)
    form = EmailForm(to=to, cc=cc, bcc=bcc, subject=subject, message=message, reply_to=reply_to, is_draft=is_draft)
    stored = _store(storage, file)
    try:
        email = service.update_email(session, email, current_user, form, mailer, storage, stored)
    except EmailDeliveryError:
        logger.exception("Draft %s could not be sent", email_id)
        raise HTTPException(status_code=500, detail="Failed to send email")
    return to_activity_read(email)

@router.delete("/emails/{email_id}", response_model=MessageResponse)
def delete_email(
    email_id: uuid.UUID,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    email = _find_modifiable(session, lead, email_id, ActivityType.EMAIL, current_user)
    service.delete_activity(session, email, storage)
    return MessageResponse(message="Email log and attachment deleted successfully")

# ---- Invoices ----

@router.get("/invoices", response_model=List[InvoiceRead])
def read_invoices(lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    found = service.get_lead_activities(session, lead.id, ActivityType.INVOICE)
    return [to_activity_read(invoice) for invoice in found]

@router.post("/invoices", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoicePayload,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    invoice = invoices.create_invoice(session, lead.id, current_user.id, payload.invoice_fields())
    return to_activity_read(invoice)

@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def read_invoice(invoice_id: uuid.UUID, lead: Lead = Depends(get_parent_lead), session: Session = Depends(get_session)):
    return to_activity_read(_find(session, lead, invoice_id, ActivityType.INVOICE))

@router.patch("/invoices/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: uuid.UUID,
    payload: InvoicePayload,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    invoice = _find_modifiable(session, lead, invoice_id, ActivityType.INVOICE, current_user)
    invoice = invoices.update_invoice(session, invoice, payload.invoice_fields(), payload.title)
    return to_activity_read(invoice)

@router.delete("/invoices/{invoice_id}", response_model=MessageResponse)
def delete_invoice(
    invoice_id: uuid.UUID,
    lead: Lead = Depends(get_parent_lead),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    invoice = _find_modifiable(session, lead, invoice_id, ActivityType.INVOICE, current_user)
    service.delete_activity(session, invoice, storage)
    return MessageResponse(message="Invoice deleted successfully")

# ---- Recent activity feed ----

@feed_router.get("", response_model=List[ActivityRead])
def read_recent_activities(
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    recent = service.get_recent_activities(session, current_user, limit)
    return [to_activity_read(activity, include_lead=True) for activity in recent]
