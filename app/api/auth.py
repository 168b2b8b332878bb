"""
Authentication API routes.

Signup is two-step: /register stores a pending registration and emails a
six-digit code, /verify-email turns it into a user. Accounts are keyed by
(email, role), so one address may hold a customer and a supplier login.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, field_validator, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, UserRole
from app.db.storage import Storage, is_expired
from app.core.security import (
    verify_password, get_password_hash, create_user_token,
    generate_numeric_code, get_role_value
)
from app.core.rbac import get_current_user
from app.core.config import settings
from app.core.logging import get_logger
from app.api.schemas import UserOut
from app.services.email_service import email_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

SIGNUP_ROLES = (UserRole.CUSTOMER.value, UserRole.SUPPLIER.value)


def _check_password(v: str) -> str:
    if not re.search(r'[A-Za-z]', v):
        raise ValueError('Password must contain at least one letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain at least one number')
    return v


# ============= SCHEMAS =============

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    role: str = UserRole.CUSTOMER.value

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator('role')
    @classmethod
    def validate_role(cls, v: str) -> str:
        if v not in SIGNUP_ROLES:
            raise ValueError('Role must be customer or supplier')
        return v


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=10)
    role: str = UserRole.CUSTOMER.value


class ResendVerificationRequest(BaseModel):
    email: EmailStr
    role: str = UserRole.CUSTOMER.value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)
    role: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    role: str = UserRole.CUSTOMER.value


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., max_length=10)
    new_password: str = Field(..., min_length=8, max_length=128)
    role: str = UserRole.CUSTOMER.value

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class AdminPasswordResetRequest(BaseModel):
    user_id: int
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        token=create_user_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserOut.model_validate(user),
    )


# ============= ROUTES =============

@router.post("/register")
async def register(
    request: Request,
    data: RegisterRequest,
    db: Session = Depends(get_db)
):
    """Start a signup. The admin notification address is created directly as an admin."""
    storage = Storage(db)
    email = data.email.lower()

    if storage.get_user_by_email_role(email, data.role):
        raise HTTPException(status_code=400, detail="User already exists with this role")

    if email == settings.ADMIN_NOTIFICATION_EMAIL.lower():
        if storage.get_user_by_email_role(email, UserRole.ADMIN.value):
            raise HTTPException(status_code=400, detail="User already exists with this role")
        user = storage.create_user(
            email=email,
            hashed_password=get_password_hash(data.password),
            role=UserRole.ADMIN.value,
            name=data.name,
            is_admin=True,
            is_verified=True,
        )
        storage.audit("register", user_id=user.id, entity_type="user", entity_id=user.id,
                      details={"email": email, "role": UserRole.ADMIN.value},
                      ip_address=request.client.host if request.client else None)
        db.commit()
        db.refresh(user)
        return _token_response(user)

    code = generate_numeric_code()
    storage.save_pending_registration(
        email=email,
        role=data.role,
        hashed_password=get_password_hash(data.password),
        name=data.name,
        company_name=data.company,
        code=code,
    )

    sent = await email_service.send_verification_email(email, code, data.name)
    if not sent:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to send verification email. Please try again.")

    db.commit()
    logger.info(f"Pending registration stored for {email} ({data.role})")
    return {
        "message": "Verification code sent to your email",
        "requires_verification": True,
        "email": email,
        "role": data.role,
    }


@router.post("/verify-email")
async def verify_email(
    request: Request,
    data: VerifyEmailRequest,
    db: Session = Depends(get_db)
):
    """Confirm the emailed code and create the account."""
    storage = Storage(db)
    pending = storage.get_pending_registration(data.email, data.role)
    if not pending:
        raise HTTPException(status_code=400, detail="Registration not found or already verified")

    if pending.verification_code != data.code.strip():
        raise HTTPException(status_code=400, detail="Invalid verification code")

    if is_expired(pending.verification_code_expiry):
        storage.delete_pending_registration(pending)
        db.commit()
        raise HTTPException(status_code=400, detail="Verification code has expired. Please register again.")

    company_name = pending.company_name
    try:
        user = storage.complete_registration(pending)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("register", user_id=user.id, entity_type="user", entity_id=user.id,
                  details={"email": user.email, "role": get_role_value(user.role)},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)

    try:
        await email_service.send_admin_notification(
            "signup",
            user_role=get_role_value(user.role),
            user_name=user.name,
            user_email=user.email,
            company=company_name,
        )
    except Exception:
        logger.exception("Admin signup notification failed")

    return _token_response(user)


@router.post("/resend-verification")
async def resend_verification(
    data: ResendVerificationRequest,
    db: Session = Depends(get_db)
):
    """Issue a fresh code for a pending registration."""
    storage = Storage(db)
    pending = storage.get_pending_registration(data.email, data.role)
    if not pending:
        raise HTTPException(status_code=400, detail="Registration not found or already verified")

    code = generate_numeric_code()
    storage.refresh_pending_code(pending, code)
    sent = await email_service.send_verification_email(pending.email, code, pending.name)
    if not sent:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to send verification email. Please try again.")

    db.commit()
    return {"message": "Verification code resent"}


@router.post("/login")
async def login(
    request: Request,
    data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate and return a JWT; role defaults to customer with an admin fallback."""
    storage = Storage(db)
    role = data.role or UserRole.CUSTOMER.value
    user = storage.get_user_by_email_role(data.email, role)
    if user is None and role == UserRole.CUSTOMER.value:
        user = storage.get_user_by_email_role(data.email, UserRole.ADMIN.value)

    if not user or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is disabled")

    if not user.is_verified:
        raise HTTPException(status_code=400, detail="Please verify your email before signing in")

    if user.must_reset_password:
        return {
            "requires_password_reset": True,
            "user_id": user.id,
            "message": "Please set a new password to continue",
        }

    user.last_login = datetime.now(timezone.utc)
    storage.audit("login", user_id=user.id, entity_type="user", entity_id=user.id,
                  details={"email": user.email},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)

    return _token_response(user)


@router.get("/me", response_model=UserOut)
async def get_me(user: User = Depends(get_current_user)):
    """Get current authenticated user."""
    return user


@router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest,
    db: Session = Depends(get_db)
):
    """Email a reset code. The response does not reveal whether the account exists."""
    generic = {"message": "If an account exists with this email, a reset code has been sent"}
    storage = Storage(db)
    user = storage.get_user_by_email_role(data.email, data.role)
    if not user:
        return generic

    code = generate_numeric_code()
    user.reset_code = code
    user.reset_code_expiry = datetime.now(timezone.utc) + timedelta(minutes=settings.RESET_CODE_TTL_MINUTES)

    sent = await email_service.send_password_reset_email(user.email, code, get_role_value(user.role))
    if not sent:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to send reset email. Please try again.")

    db.commit()
    return generic


@router.post("/reset-password")
async def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    """Set a new password using an emailed reset code."""
    storage = Storage(db)
    user = storage.get_user_by_email_role(data.email, data.role)
    if (
        not user
        or not user.reset_code
        or user.reset_code != data.code.strip()
        or is_expired(user.reset_code_expiry)
    ):
        raise HTTPException(status_code=400, detail="Invalid or expired reset code")

    user.hashed_password = get_password_hash(data.new_password)
    user.reset_code = None
    user.reset_code_expiry = None
    storage.audit("reset_password", user_id=user.id, entity_type="user", entity_id=user.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()

    return {"message": "Password reset successfully"}


@router.post("/admin-password-reset")
async def admin_password_reset(
    request: Request,
    data: AdminPasswordResetRequest,
    db: Session = Depends(get_db)
):
    """First login of an admin-created account: replace the temporary password."""
    storage = Storage(db)
    user = storage.get_user(data.user_id)
    if not user or not user.is_admin_created or not user.must_reset_password:
        raise HTTPException(status_code=400, detail="Password reset not required for this account")
    if not verify_password(data.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Temporary password is incorrect")

    user.hashed_password = get_password_hash(data.new_password)
    user.must_reset_password = False
    user.is_verified = True
    user.last_login = datetime.now(timezone.utc)
    storage.audit("admin_password_reset", user_id=user.id, entity_type="user", entity_id=user.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)

    return _token_response(user)


@router.post("/change-password")
async def change_password(
    request: Request,
    data: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change current user's password."""
    if not verify_password(data.current_password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    user.hashed_password = get_password_hash(data.new_password)
    Storage(db).audit("change_password", user_id=user.id, entity_type="user", entity_id=user.id,
                      ip_address=request.client.host if request.client else None)
    db.commit()

    return {"message": "Password changed successfully"}
