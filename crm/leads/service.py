import logging
from typing import Optional, List, Dict
from sqlmodel import Session, select, col, or_
import uuid

from crm.database import utcnow
from crm.auth.schemas import CurrentUser
from crm.leads.models import Lead, LeadAssignment, LeadStatus
from crm.leads.schemas import LeadCreate, LeadUpdate, LeadRead, LeadsByStatus, StatusStat
from crm.users.models import User, UserRole
from crm.storage import FileStorage

logger = logging.getLogger(__name__)

class UnknownUsersError(ValueError):
    """Some assigned user ids do not exist."""

    def __init__(self, missing: List[uuid.UUID]):
        self.missing = missing
        super().__init__(f"Unknown users: {', '.join(str(m) for m in missing)}")

# Columns that cannot be nulled through a partial update
REQUIRED_FIELDS = {"title", "value", "currency", "status", "priority", "is_archived", "contacts"}

def assigned_lead_ids(user_id: uuid.UUID):
    return select(LeadAssignment.lead_id).where(LeadAssignment.user_id == user_id)

def scope_leads(query, identity: CurrentUser):
    """SALES only see leads they created or are assigned to."""
    if identity.role == UserRole.SALES:
        query = query.where(
            or_(
                Lead.created_by_id == identity.id,
                col(Lead.id).in_(assigned_lead_ids(identity.id)),
            )
        )
    return query

def can_access(lead: Lead, identity: CurrentUser) -> bool:
    if identity.role != UserRole.SALES:
        return True
    if lead.created_by_id == identity.id:
        return True
    return any(user.id == identity.id for user in lead.assigned_users)

def get_leads(
    session: Session,
    identity: CurrentUser,
    skip: int = 0,
    limit: int = 100,
    status: Optional[LeadStatus] = None,
    search: Optional[str] = None,
) -> List[Lead]:
    query = select(Lead).where(Lead.is_archived == False)  # noqa: E712

    if status:
        query = query.where(Lead.status == status)

    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(col(Lead.title).ilike(pattern), col(Lead.company).ilike(pattern))
        )

    query = scope_leads(query, identity)
    return session.exec(query.order_by(col(Lead.created_at).desc()).offset(skip).limit(limit)).all()

def get_lead(session: Session, lead_id: uuid.UUID) -> Optional[Lead]:
    return session.get(Lead, lead_id)

def get_leads_by_status(session: Session, identity: CurrentUser, archived: bool = False) -> LeadsByStatus:
    query = scope_leads(select(Lead).where(Lead.is_archived == archived), identity)
    leads = session.exec(query.order_by(col(Lead.updated_at).desc())).all()

    grouped: Dict[LeadStatus, List[LeadRead]] = {}
    totals: Dict[LeadStatus, StatusStat] = {}
    for lead in leads:
        grouped.setdefault(lead.status, []).append(LeadRead.model_validate(lead))
        stat = totals.setdefault(lead.status, StatusStat(status=lead.status, count=0, total_value=0))
        stat.count += 1
        stat.total_value += lead.value or 0

    return LeadsByStatus(grouped=grouped, stats=list(totals.values()))

def resolve_users(session: Session, user_ids: List[uuid.UUID]) -> List[User]:
    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
        return []
    users = session.exec(select(User).where(col(User.id).in_(unique_ids))).all()
    found = {user.id for user in users}
    missing = [uid for uid in unique_ids if uid not in found]
    if missing:
        raise UnknownUsersError(missing)
    return list(users)

def stamp_outcome(db_lead: Lead, new_status: Optional[LeadStatus]) -> None:
    """Stamp won_at / lost_at on the first transition into WON / LOST. Never cleared afterwards."""
    if new_status == LeadStatus.WON and db_lead.status != LeadStatus.WON and db_lead.won_at is None:
        db_lead.won_at = utcnow()
    elif new_status == LeadStatus.LOST and db_lead.status != LeadStatus.LOST and db_lead.lost_at is None:
        db_lead.lost_at = utcnow()

def create_lead(session: Session, lead_create: LeadCreate, creator_id: uuid.UUID) -> Lead:
    assigned = resolve_users(session, lead_create.assigned_user_ids or [])

    lead_data = lead_create.model_dump(exclude={"assigned_user_ids", "status"})
    db_lead = Lead(**lead_data, created_by_id=creator_id)
    stamp_outcome(db_lead, lead_create.status)
    db_lead.status = lead_create.status
    db_lead.assigned_users = assigned

    session.add(db_lead)
    session.commit()
    session.refresh(db_lead)
    logger.info("Lead %s created by %s", db_lead.id, creator_id)
    return db_lead

def update_lead(session: Session, db_lead: Lead, lead_update: LeadUpdate) -> Lead:
    update_data = lead_update.model_dump(exclude_unset=True, exclude={"assigned_user_ids"})

    if "assigned_user_ids" in lead_update.model_fields_set and lead_update.assigned_user_ids is not None:
        db_lead.assigned_users = resolve_users(session, lead_update.assigned_user_ids)

    if "status" in update_data:
        stamp_outcome(db_lead, update_data["status"])

    for key, value in update_data.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(db_lead, key, value)

    db_lead.updated_at = utcnow()
    session.add(db_lead)
    session.commit()
    session.refresh(db_lead)
    return db_lead

def delete_lead(session: Session, db_lead: Lead, storage: FileStorage) -> None:
    # Attachment paths must be read before the cascade removes the activity rows
    paths = [
        activity.meta.get("attachment_path")
        for activity in db_lead.activities
        if activity.meta and activity.meta.get("attachment_path")
    ]
    lead_id = db_lead.id
    session.delete(db_lead)
    session.commit()
    for path in paths:
        storage.delete(path)
    logger.info("Lead %s deleted with %d attachment(s)", lead_id, len(paths))
