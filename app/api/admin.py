"""
Admin API routes - user management, pending signups, reports and manual jobs.
Requires the admin role (or the is_admin flag) for all endpoints.
"""
import re
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, UserRole
from app.db.storage import Storage
from app.core.security import get_password_hash, get_role_value
from app.core.rbac import require_admin
from app.core.logging import get_logger
from app.api.schemas import UserOut
from app.services.message_reminders import check_and_send_unread_reminders

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])

VALID_ROLES = [r.value for r in UserRole]


# ============= SCHEMAS =============

class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=255)
    role: str = UserRole.CUSTOMER.value
    company_id: Optional[int] = None
    title: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Enforce password requirements."""
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        if not re.search(r'[A-Za-z]', v):
            raise ValueError('Password must contain at least one letter')
        if not re.search(r'[0-9]', v):
            raise ValueError('Password must contain at least one number')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate role is valid."""
        if v.lower() not in VALID_ROLES:
            raise ValueError(f'Role must be one of: {", ".join(VALID_ROLES)}')
        return v.lower()


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None
    company_id: Optional[int] = None
    title: Optional[str] = None
    phone: Optional[str] = None


class PendingRegistrationResponse(BaseModel):
    id: int
    email: str
    role: str
    name: str
    company_name: Optional[str]
    verification_code_expiry: Optional[str]

    model_config = {"from_attributes": True}


class PendingVerifyRequest(BaseModel):
    email: EmailStr
    role: str = UserRole.CUSTOMER.value


class TopCustomer(BaseModel):
    user_id: int
    name: Optional[str]
    email: str
    total_spent: float
    order_count: int


class ReportsResponse(BaseModel):
    total_customers: int
    total_rfqs: int
    total_orders: int
    total_revenue: float
    top_customers: List[TopCustomer]


# ============= USERS =============

@router.get("/users", response_model=List[UserOut])
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List every user, optionally filtered by role."""
    return Storage(db).list_users(role)


@router.get("/suppliers", response_model=List[UserOut])
async def list_suppliers(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Supplier accounts available for RFQ assignment."""
    return Storage(db).get_suppliers()


@router.post("/users", response_model=UserOut, status_code=201)
async def create_user(
    request: Request,
    user_data: UserCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Create an account with a temporary password.

    The user must choose a new password on first login
    (POST /api/auth/admin-password-reset).
    """
    storage = Storage(db)
    if user_data.company_id is not None and not storage.get_company(user_data.company_id):
        raise HTTPException(status_code=404, detail="Company not found")

    try:
        user = storage.create_user(
            email=user_data.email,
            hashed_password=get_password_hash(user_data.password),
            role=user_data.role,
            name=user_data.name,
            company_id=user_data.company_id,
            title=user_data.title,
            phone=user_data.phone,
            is_admin=user_data.role == UserRole.ADMIN.value,
            is_verified=True,
            is_admin_created=True,
            must_reset_password=True,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    storage.audit("create_user", user_id=admin.id, entity_type="user", entity_id=user.id,
                  details={"email": user.email, "role": user_data.role},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user


@router.get("/users/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Get a specific user by ID. Admin-only."""
    user = Storage(db).get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/users/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    request: Request,
    update_data: UserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update a user. Admin-only."""
    storage = Storage(db)
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    fields = update_data.model_dump(exclude_unset=True)
    if "role" in fields:
        if fields["role"] not in VALID_ROLES:
            raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(VALID_ROLES)}")
        fields["is_admin"] = fields["role"] == UserRole.ADMIN.value
    if fields.get("company_id") is not None and not storage.get_company(fields["company_id"]):
        raise HTTPException(status_code=404, detail="Company not found")
    if fields.get("email"):
        fields["email"] = fields["email"].lower()

    try:
        storage.update_user(user, **fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("update_user", user_id=admin.id, entity_type="user", entity_id=user_id,
                  details=update_data.model_dump(exclude_unset=True),
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a user. Admin-only. Cannot delete yourself."""
    if admin.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    storage = Storage(db)
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user_email = user.email
    try:
        storage.delete_user(user)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("delete_user", user_id=admin.id, entity_type="user", entity_id=user_id,
                  details={"email": user_email},
                  ip_address=request.client.host if request.client else None)
    db.commit()

    return {"message": f"User {user_email} deleted"}


@router.post("/users/{user_id}/verify", response_model=UserOut)
async def verify_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Mark an existing account as email-verified."""
    storage = Storage(db)
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.is_verified = True
    user.verification_code = None
    user.verification_code_expiry = None
    storage.audit("verify_user", user_id=admin.id, entity_type="user", entity_id=user.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user


# ============= PENDING REGISTRATIONS =============

@router.get("/pending-registrations", response_model=List[PendingRegistrationResponse])
async def list_pending_registrations(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return [
        PendingRegistrationResponse(
            id=p.id,
            email=p.email,
            role=get_role_value(p.role),
            name=p.name,
            company_name=p.company_name,
            verification_code_expiry=p.verification_code_expiry.isoformat() if p.verification_code_expiry else None,
        )
        for p in Storage(db).list_pending_registrations()
    ]


@router.post("/pending-registrations/verify", response_model=UserOut)
async def verify_pending_registration(
    request: Request,
    data: PendingVerifyRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Complete a signup on the user's behalf, regardless of code expiry."""
    storage = Storage(db)
    pending = storage.get_pending_registration(data.email, data.role)
    if not pending:
        raise HTTPException(status_code=404, detail="Pending registration not found")

    try:
        user = storage.complete_registration(pending)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("verify_pending_registration", user_id=admin.id, entity_type="user", entity_id=user.id,
                  details={"email": user.email, "role": get_role_value(user.role)},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user


# ============= REPORTS & JOBS =============

@router.get("/reports", response_model=ReportsResponse)
async def get_reports(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Portal totals plus the five biggest customers by order value."""
    return Storage(db).admin_reports()


@router.post("/trigger-email-notifications")
async def trigger_email_notifications(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Run the unread-message reminder scan now."""
    result = await check_and_send_unread_reminders(db)
    db.commit()
    logger.info(f"Manual reminder scan by admin {admin.id}: {result}")
    return {"message": "Unread message check completed", **result}
