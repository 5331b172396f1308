import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from crm.database import get_session
from crm.users.models import User, UserRole, UserStatus
from crm.users.schemas import UserRead, UserDetail, ProfileUpdate
from crm.users import service as user_service
from crm.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    CurrentUser,
    ForgotPasswordRequest,
    GoogleProfile,
    GoogleTokenRequest,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from crm.auth import service
from crm.auth.dependencies import get_current_user
from crm.auth.google import GoogleIdentityClient, get_google_client
from crm.mail import EmailDeliveryError, OutgoingEmail, SmtpMailer, get_mailer
from crm.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8

def _auth_response(user: User, message: str) -> AuthResponse:
    return AuthResponse(
        message=message,
        user=UserRead.model_validate(user),
        access_token=service.create_user_token(user),
    )

def _ensure_active(user: User) -> None:
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, session: Session = Depends(get_session)):
    if user_service.get_user_by_email(session, body.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    role = UserRole.VIEWER
    if body.role:
        try:
            role = UserRole(body.role.upper())
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role")

    user = user_service.create_user(
        session, name=body.name, email=body.email, password=body.password, role=role, phone=body.phone
    )
    logger.info("Registered user %s", user.email)
    return _auth_response(user, "Registration successful")

@router.post("/login", response_model=AuthResponse)
def login(body: LoginRequest, session: Session = Depends(get_session)):
    user = user_service.get_user_by_email(session, body.email)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.hashed_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please login with Google.")
    if not service.authenticate_user(session, body.email, body.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    _ensure_active(user)
    return _auth_response(user, "Login successful")

@router.post("/google-login", response_model=AuthResponse)
def google_login(
    body: GoogleTokenRequest,
    session: Session = Depends(get_session),
    google: GoogleIdentityClient = Depends(get_google_client),
):
    profile = google.fetch_userinfo(body.token)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Google token")

    user = user_service.get_user_by_email(session, profile.email)
    if not user:
        user = user_service.create_user(
            session,
            name=profile.name or profile.email.split("@")[0],
            email=profile.email,
            role=UserRole.VIEWER,
            google_id=profile.google_id or profile.email,
            avatar=profile.avatar,
        )
        logger.info("Registered Google user %s", user.email)
    elif not user.google_id:
        user.google_id = profile.google_id or profile.email
        if not user.avatar:
            user.avatar = profile.avatar
        session.add(user)
        session.commit()
        session.refresh(user)

    _ensure_active(user)
    return _auth_response(user, "Login successful")

@router.post("/google-check", response_model=GoogleProfile)
def google_check(
    body: GoogleTokenRequest,
    session: Session = Depends(get_session),
    google: GoogleIdentityClient = Depends(get_google_client),
):
    profile = google.fetch_userinfo(body.token)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Google token")
    if user_service.get_user_by_email(session, profile.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account already exists, please login")
    return GoogleProfile(email=profile.email, name=profile.name, avatar=profile.avatar)

@router.get("/profile", response_model=UserDetail)
def read_profile(current_user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    user = user_service.get_user(session, current_user.id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_service.build_user_detail(session, user)

@router.patch("/profile", response_model=ProfileResponse)
def update_profile(
    profile_update: ProfileUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = user_service.get_user(session, current_user.id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if "skills" in profile_update.model_fields_set and profile_update.skills is None:
        profile_update.skills = []
    user = user_service.update_user(session, user, profile_update)
    return ProfileResponse(user=UserRead.model_validate(user), message="Profile updated")

@router.post("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = user_service.get_user(session, current_user.id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not user.hashed_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This account signs in with Google and has no password",
        )
    if not user_service.verify_password(body.current_password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Current password is incorrect")
    if len(body.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"New password must be at least {MIN_PASSWORD_LENGTH} characters",
        )
    user_service.set_password(session, user, body.new_password)
    return MessageResponse(message="Password changed")

@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest,
    session: Session = Depends(get_session),
    mailer: SmtpMailer = Depends(get_mailer),
):
    user = user_service.get_user_by_email(session, body.email)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    code = service.generate_reset_code()
    service.store_reset_code(session, user, code)

    html = (
        f"<p>Hello {user.name},</p>"
        f"<p>Your password reset code is <strong>{code}</strong>.</p>"
        f"<p>It expires in {settings.RESET_CODE_EXPIRE_MINUTES} minutes.</p>"
    )
    try:
        mailer.send(OutgoingEmail(to=user.email, subject="Password reset code", html=html))
    except EmailDeliveryError:
        logger.exception("Could not deliver reset code to %s", user.email)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send reset email")
    return MessageResponse(message="Reset code sent to your email")

@router.post("/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordRequest, session: Session = Depends(get_session)):
    user = service.find_user_by_reset_code(session, body.email, body.code)
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired code")
    user_service.set_password(session, user, body.new_password)
    return MessageResponse(message="Password has been reset")
