import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
from typing import List
import uuid

from crm.database import get_session
from crm.auth.dependencies import get_current_user, require_roles
from crm.auth.schemas import CurrentUser, MessageResponse
from crm.users.schemas import TeamMemberCreate, TeamMemberUpdate, UserRead, UserDetail, SalesMember
from crm.users.models import UserRole
from crm.users import service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team", tags=["team"])
sales_router = APIRouter(prefix="/sales", tags=["sales"])

admin_only = require_roles(UserRole.ADMIN)

@router.get("", response_model=List[UserRead])
def read_team(
    offset: int = 0,
    limit: int = 100,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return service.get_all_users(session, offset, limit)

@router.get("/{user_id}", response_model=UserDetail)
def read_member(
    user_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = service.get_user(session, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return service.build_user_detail(session, user)

@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_member(
    member_create: TeamMemberCreate,
    current_user: CurrentUser = Depends(admin_only),
    session: Session = Depends(get_session),
):
    if service.get_user_by_email(session, member_create.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    user = service.create_team_member(session, member_create)
    logger.info("%s added team member %s", current_user.email, user.email)
    return user

@router.patch("/{user_id}", response_model=UserRead)
def update_member(
    user_id: uuid.UUID,
    member_update: TeamMemberUpdate,
    current_user: CurrentUser = Depends(admin_only),
    session: Session = Depends(get_session),
):
    user = service.get_user(session, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if member_update.email and member_update.email != user.email:
        if service.get_user_by_email(session, member_update.email):
            raise HTTPException(status_code=409, detail="Email already registered")
    return service.update_user(session, user, member_update)

@router.delete("/{user_id}", response_model=MessageResponse)
def delete_member(
    user_id: uuid.UUID,
    current_user: CurrentUser = Depends(admin_only),
    session: Session = Depends(get_session),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=403, detail="You cannot delete your own account")
    user = service.get_user(session, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if service.is_referenced(session, user):
        raise HTTPException(status_code=409, detail="User is still referenced by leads or activities")
    try:
        service.delete_user(session, user)
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="User is still referenced by leads or activities")
    logger.info("%s removed team member %s", current_user.email, user_id)
    return MessageResponse(message="User deleted")

@sales_router.get("", response_model=List[SalesMember])
def read_sales(current_user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    return service.get_active_sales(session)
