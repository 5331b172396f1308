import logging
from pathlib import Path
from typing import List, Optional, Union
import uuid

from sqlmodel import Session, select, col, or_

from crm.config import settings
from crm.database import utcnow
from crm.auth.schemas import CurrentUser
from crm.activities.models import ActivityType, LeadActivity
from crm.activities.schemas import (
    ActivityCreate,
    CallCreate,
    CallUpdate,
    EmailForm,
    EmailMeta,
    EmailStatus,
    MeetingCreate,
    MeetingUpdate,
    NoteMeta,
)
from crm.leads.models import Lead
from crm.leads.service import assigned_lead_ids
from crm.users.models import User, UserRole
from crm.mail import EmailDeliveryError, MailAttachment, OutgoingEmail, SmtpMailer
from crm.storage import FileStorage, StoredFile

logger = logging.getLogger(__name__)

def get_lead_activities(
    session: Session, lead_id: uuid.UUID, activity_type: Optional[ActivityType] = None
) -> List[LeadActivity]:
    query = select(LeadActivity).where(LeadActivity.lead_id == lead_id)
    if activity_type:
        query = query.where(LeadActivity.type == activity_type)
    return session.exec(query.order_by(col(LeadActivity.created_at).desc())).all()

def get_activity(
    session: Session, lead_id: uuid.UUID, activity_id: uuid.UUID, activity_type: ActivityType
) -> Optional[LeadActivity]:
    return session.exec(
        select(LeadActivity)
        .where(LeadActivity.id == activity_id)
        .where(LeadActivity.lead_id == lead_id)
        .where(LeadActivity.type == activity_type)
    ).first()

def can_modify(activity: LeadActivity, identity: CurrentUser) -> bool:
    """Only the creator or an ADMIN may change or remove an activity."""
    return activity.created_by_id == identity.id or identity.role == UserRole.ADMIN

def _save(session: Session, activity: LeadActivity) -> LeadActivity:
    session.add(activity)
    session.commit()
    session.refresh(activity)
    return activity

def create_activity(
    session: Session, lead_id: uuid.UUID, user_id: uuid.UUID, activity_create: ActivityCreate
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead_id,
        created_by_id=user_id,
        type=activity_create.type,
        title=activity_create.title or activity_create.content,
        description=activity_create.description or "",
        meta=activity_create.meta,
        scheduled_at=activity_create.scheduled_at or utcnow(),
        location=activity_create.location,
        is_completed=activity_create.is_completed,
    )
    return _save(session, activity)

def create_scheduled(
    session: Session,
    lead_id: uuid.UUID,
    user_id: uuid.UUID,
    activity_type: ActivityType,
    body: Union[CallCreate, MeetingCreate],
) -> LeadActivity:
    """Calls and meetings: a title, a time and type specific meta."""
    activity = LeadActivity(
        lead_id=lead_id,
        created_by_id=user_id,
        type=activity_type,
        title=body.title,
        description=body.description or "",
        meta=body.meta.model_dump(mode="json"),
        scheduled_at=body.scheduled_at or utcnow(),
        location=getattr(body, "location", None),
        is_completed=body.is_completed,
    )
    return _save(session, activity)

def update_scheduled(
    session: Session, activity: LeadActivity, body: Union[CallUpdate, MeetingUpdate]
) -> LeadActivity:
    update_data = body.model_dump(exclude_unset=True, exclude={"meta"})
    for key, value in update_data.items():
        if key == "is_completed" and value is None:
            continue
        setattr(activity, key, value)
    if body.meta is not None:
        activity.meta = body.meta.model_dump(mode="json")
    activity.updated_at = utcnow()
    return _save(session, activity)

# ---- Notes ----

def _attachment_meta(stored: StoredFile) -> dict:
    return {
        "attachment_url": stored.url,
        "attachment_path": stored.path,
        "attachment_name": stored.filename,
    }

def create_note(
    session: Session,
    lead_id: uuid.UUID,
    user_id: uuid.UUID,
    content: str,
    stored: Optional[StoredFile] = None,
) -> LeadActivity:
    meta = NoteMeta(**_attachment_meta(stored)) if stored else NoteMeta()
    note = LeadActivity(
        lead_id=lead_id,
        created_by_id=user_id,
        type=ActivityType.NOTE,
        title="Note",
        description=content,
        meta=meta.model_dump(exclude_none=True),
    )
    return _save(session, note)

def update_note(
    session: Session,
    note: LeadActivity,
    content: str,
    storage: FileStorage,
    stored: Optional[StoredFile] = None,
    remove_attachment: bool = False,
) -> LeadActivity:
    meta = dict(note.meta or {})
    old_path = meta.get("attachment_path")

    if stored:
        storage.delete(old_path)
        meta.update(_attachment_meta(stored))
    elif remove_attachment:
        storage.delete(old_path)
        meta.update(attachment_url=None, attachment_path=None, attachment_name=None)

    note.description = content
    note.meta = meta
    note.updated_at = utcnow()
    return _save(session, note)

def delete_activity(session: Session, activity: LeadActivity, storage: FileStorage) -> None:
    path = (activity.meta or {}).get("attachment_path")
    session.delete(activity)
    session.commit()
    storage.delete(path)

# ---- Emails ----

def _sender(session: Session, identity: CurrentUser) -> str:
    user = session.get(User, identity.id)
    return user.name if user else "Team"

def _mail_attachments(path: Optional[str], filename: Optional[str], content_type: Optional[str] = None) -> List[MailAttachment]:
    if not path:
        return []
    if not Path(path).is_file():
        logger.warning("Attachment file not found on disk: %s", path)
        return []
    return [MailAttachment(path=path, filename=filename or Path(path).name, content_type=content_type)]

def send_email(
    session: Session,
    lead_id: uuid.UUID,
    identity: CurrentUser,
    form: EmailForm,
    mailer: SmtpMailer,
    storage: FileStorage,
    stored: Optional[StoredFile] = None,
) -> LeadActivity:
    """Send (unless a draft) and then log the email. EmailDeliveryError leaves nothing behind."""
    sender_name = _sender(session, identity)
    reply_to = form.reply_to or settings.SMTP_FROM_EMAIL
    is_draft = bool(form.is_draft)

    if not is_draft:
        attachments = _mail_attachments(stored.path, stored.filename, stored.content_type) if stored else []
        try:
            mailer.send(
                OutgoingEmail(
                    to=form.to,
                    cc=form.cc,
                    bcc=form.bcc,
                    subject=form.subject,
                    html=form.message,
                    reply_to=reply_to,
                    sender_name=sender_name,
                    attachments=attachments,
                )
            )
        except EmailDeliveryError:
            if stored:
                storage.delete(stored.path)
            raise

    meta = EmailMeta(
        status=EmailStatus.DRAFT if is_draft else EmailStatus.SENT,
        from_label=f"{sender_name} from {settings.MAIL_BRAND}",
        to=form.to,
        cc=form.cc,
        bcc=form.bcc,
        reply_to=reply_to,
        message_body=form.message,
        sent_at=None if is_draft else utcnow(),
        **(_attachment_meta(stored) if stored else {}),
    )
    email = LeadActivity(
        lead_id=lead_id,
        created_by_id=identity.id,
        type=ActivityType.EMAIL,
        title=form.subject,
        description=form.message or "",
        meta=meta.model_dump(mode="json"),
        is_completed=not is_draft,
    )
    return _save(session, email)

def update_email(
    session: Session,
    email: LeadActivity,
    identity: CurrentUser,
    form: EmailForm,
    mailer: SmtpMailer,
    storage: FileStorage,
    stored: Optional[StoredFile] = None,
) -> LeadActivity:
    """Merge new fields over the stored email; a draft with is_draft=false is sent now."""
    current = EmailMeta.model_validate(email.meta or {})
    merged = current.model_copy(
        update={
            "to": form.to or current.to,
            "cc": form.cc or current.cc,
            "bcc": form.bcc or current.bcc,
            "reply_to": form.reply_to or current.reply_to,
            "message_body": form.message or current.message_body,
        }
    )
    subject = form.subject or email.title
    old_path = current.attachment_path

    if stored:
        merged = merged.model_copy(update=_attachment_meta(stored))

    sending_now = current.status == EmailStatus.DRAFT and form.is_draft is False
    if sending_now:
        sender_name = _sender(session, identity)
        try:
            mailer.send(
                OutgoingEmail(
                    to=merged.to,
                    cc=merged.cc,
                    bcc=merged.bcc,
                    subject=subject,
                    html=merged.message_body or "",
                    reply_to=merged.reply_to,
                    sender_name=sender_name,
                    attachments=_mail_attachments(merged.attachment_path, merged.attachment_name),
                )
            )
        except EmailDeliveryError:
            if stored:
                storage.delete(stored.path)
            raise
        merged = merged.model_copy(
            update={
                "status": EmailStatus.SENT,
                "from_label": f"{sender_name} from {settings.MAIL_BRAND}",
                "sent_at": utcnow(),
            }
        )

    if stored and old_path:
        storage.delete(old_path)

    email.title = subject
    email.description = merged.message_body or ""
    email.meta = merged.model_dump(mode="json")
    email.is_completed = merged.status == EmailStatus.SENT
    email.updated_at = utcnow()
    return _save(session, email)

# ---- Feed ----

def get_recent_activities(session: Session, identity: CurrentUser, limit: int = 50) -> List[LeadActivity]:
    query = select(LeadActivity)
    if identity.role == UserRole.SALES:
        visible_leads = select(Lead.id).where(
            or_(Lead.created_by_id == identity.id, col(Lead.id).in_(assigned_lead_ids(identity.id)))
        )
        query = query.where(
            or_(LeadActivity.created_by_id == identity.id, col(LeadActivity.lead_id).in_(visible_leads))
        )
    return session.exec(query.order_by(col(LeadActivity.created_at).desc()).limit(limit)).all()
