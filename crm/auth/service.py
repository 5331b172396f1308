from datetime import datetime, timedelta, timezone
from typing import Optional
import secrets
import uuid
from jose import jwt, JWTError
from sqlmodel import Session, select
from crm.users.models import User
from crm.users.service import verify_password
from crm.auth.schemas import TokenData
from crm.config import settings
from crm.database import utcnow

# Configuration
ALGORITHM = settings.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

def authenticate_user(session: Session, email: str, password: str) -> Optional[User]:
    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not user.hashed_password:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def create_user_token(user: User) -> str:
    # The email goes in 'sub'; id and role ride along so the gate needs no lookup.
    return create_access_token(
        data={"sub": user.email, "user_id": str(user.id), "role": user.role.value},
    )

def decode_access_token(token: str) -> Optional[TokenData]:
    """Return the token claims, or None when the token is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        email = payload.get("sub")
        user_id = payload.get("user_id")
        role = payload.get("role")
        if not email or not user_id or not role:
            return None
        return TokenData(email=email, user_id=uuid.UUID(user_id), role=role)
    except (JWTError, ValueError):
        return None

def generate_reset_code() -> str:
    """Six digits, 100000-999999."""
    return str(100000 + secrets.randbelow(900000))

def store_reset_code(session: Session, user: User, code: str) -> User:
    user.reset_password_token = code
    user.reset_password_expires = utcnow() + timedelta(minutes=settings.RESET_CODE_EXPIRE_MINUTES)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user

def find_user_by_reset_code(session: Session, email: str, code: str) -> Optional[User]:
    return session.exec(
        select(User)
        .where(User.email == email)
        .where(User.reset_password_token == code)
        .where(User.reset_password_expires > utcnow())
    ).first()
