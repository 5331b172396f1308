from pydantic import BaseModel, EmailStr, Field
from typing import Optional
import uuid

from crm.users.models import UserRole
from crm.users.schemas import UserRead

class CurrentUser(BaseModel):
    """Identity attached to a request by the access control gate."""

    id: uuid.UUID
    email: str
    role: UserRole

class TokenData(BaseModel):
    email: str
    user_id: uuid.UUID
    role: UserRole

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    phone: Optional[str] = None
    role: Optional[str] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

class AuthResponse(BaseModel):
    message: str
    user: UserRead
    access_token: str
    token_type: str = "bearer"

class GoogleTokenRequest(BaseModel):
    token: str = Field(min_length=1)

class GoogleProfile(BaseModel):
    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None

class GoogleAccount(GoogleProfile):
    """Userinfo plus the stable Google subject id."""

    google_id: Optional[str] = None

class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=1)
    new_password: str = Field(min_length=1)

class MessageResponse(BaseModel):
    message: str

class ProfileResponse(BaseModel):
    user: UserRead
    message: str

