from typing import Optional, List, Union
from sqlmodel import Session, select
from passlib.context import CryptContext
import uuid

from crm.database import utcnow
from crm.users.models import User, UserRole, UserStatus
from crm.leads.models import Lead
from crm.activities.models import LeadActivity
from crm.users.schemas import (
    TeamMemberCreate,
    TeamMemberUpdate,
    ProfileUpdate,
    UserDetail,
    ManagerSummary,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_user(session: Session, user_id: uuid.UUID) -> Optional[User]:
    return session.get(User, user_id)

def get_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()

def create_user(
    session: Session,
    name: str,
    email: str,
    password: Optional[str] = None,
    role: UserRole = UserRole.VIEWER,
    **profile,
) -> User:
    hashed_password = get_password_hash(password) if password else None
    db_user = User(name=name, email=email, hashed_password=hashed_password, role=role, **profile)
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user

def create_team_member(session: Session, member_create: TeamMemberCreate) -> User:
    member_data = member_create.model_dump(exclude={"password", "name", "email", "role"})
    if member_data.get("joined_at") is None:
        member_data.pop("joined_at")
    return create_user(
        session,
        name=member_create.name,
        email=member_create.email,
        password=member_create.password,
        role=member_create.role,
        **member_data,
    )

def get_all_users(session: Session, offset: int = 0, limit: int = 100) -> List[User]:
    return session.exec(select(User).order_by(User.name).offset(offset).limit(limit)).all()

def get_active_sales(session: Session) -> List[User]:
    return session.exec(
        select(User)
        .where(User.role == UserRole.SALES)
        .where(User.status == UserStatus.ACTIVE)
        .order_by(User.name)
    ).all()

# Columns that cannot be nulled through a partial update
REQUIRED_FIELDS = {"name", "email", "role", "status", "skills", "joined_at"}

def update_user(session: Session, db_user: User, user_update: Union[TeamMemberUpdate, ProfileUpdate]) -> User:
    update_data = user_update.model_dump(exclude_unset=True)

    for key, value in update_data.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(db_user, key, value)

    db_user.updated_at = utcnow()
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user

def set_password(session: Session, db_user: User, password: str) -> User:
    db_user.hashed_password = get_password_hash(password)
    db_user.reset_password_token = None
    db_user.reset_password_expires = None
    db_user.updated_at = utcnow()
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user

def delete_user(session: Session, db_user: User) -> None:
    session.delete(db_user)
    session.commit()

def build_user_detail(session: Session, db_user: User) -> UserDetail:
    """Assemble a user with their manager; assigned leads load through the relationship."""
    detail = UserDetail.model_validate(db_user, from_attributes=True)
    if db_user.reports_to_id:
        manager = session.get(User, db_user.reports_to_id)
        if manager:
            detail.reports_to = ManagerSummary.model_validate(manager)
    return detail

def is_referenced(session: Session, db_user: User) -> bool:
    """True when leads or activities still point at this user as their creator."""
    lead_id = session.exec(select(Lead.id).where(Lead.created_by_id == db_user.id).limit(1)).first()
    if lead_id:
        return True
    activity_id = session.exec(
        select(LeadActivity.id).where(LeadActivity.created_by_id == db_user.id).limit(1)
    ).first()
    return activity_id is not None
