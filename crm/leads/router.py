from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlmodel import Session
from typing import List, Optional
import uuid

from crm.database import get_session
from crm.auth.dependencies import get_current_user, require_roles
from crm.auth.schemas import CurrentUser, MessageResponse
from crm.users.models import UserRole
from crm.leads.schemas import LeadCreate, LeadRead, LeadUpdate, LeadsByStatus
from crm.leads.models import Lead, LeadStatus
from crm.leads import service
from crm.storage import FileStorage, get_storage

router = APIRouter(prefix="/leads", tags=["leads"])

can_edit_leads = require_roles(UserRole.ADMIN, UserRole.SALES)

def get_visible_lead(session: Session, lead_id: uuid.UUID, current_user: CurrentUser) -> Lead:
    lead = service.get_lead(session, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    if not service.can_access(lead, current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    return lead

@router.get("", response_model=List[LeadRead])
def read_leads(
    skip: int = 0,
    limit: int = 100,
    status: Optional[LeadStatus] = Query(None),
    search: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    leads = service.get_leads(session, current_user, skip, limit, status, search)
    return [LeadRead.model_validate(lead) for lead in leads]

@router.get("/by-status", response_model=LeadsByStatus)
def read_leads_by_status(
    archived: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return service.get_leads_by_status(session, current_user, archived)

@router.get("/{lead_id}", response_model=LeadRead)
def read_lead(
    lead_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return LeadRead.model_validate(get_visible_lead(session, lead_id, current_user))

@router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    lead_create: LeadCreate,
    current_user: CurrentUser = Depends(can_edit_leads),
    session: Session = Depends(get_session),
):
    try:
        lead = service.create_lead(session, lead_create, current_user.id)
    except service.UnknownUsersError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return LeadRead.model_validate(lead)

@router.api_route("/{lead_id}", methods=["PUT", "PATCH"], response_model=LeadRead)
def update_lead(
    lead_id: uuid.UUID,
    lead_update: LeadUpdate,
    current_user: CurrentUser = Depends(can_edit_leads),
    session: Session = Depends(get_session),
):
    lead = get_visible_lead(session, lead_id, current_user)
    try:
        lead = service.update_lead(session, lead, lead_update)
    except service.UnknownUsersError as exc:
        session.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    return LeadRead.model_validate(lead)

@router.delete("/{lead_id}", response_model=MessageResponse)
def delete_lead(
    lead_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
    session: Session = Depends(get_session),
    storage: FileStorage = Depends(get_storage),
):
    lead = service.get_lead(session, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    service.delete_lead(session, lead, storage)
    return MessageResponse(message="Lead deleted successfully")
