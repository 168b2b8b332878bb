"""
Profile API - the signed-in user's own account details.
"""
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, UserRole
from app.db.storage import Storage
from app.core.rbac import get_current_user
from app.core.security import get_role_value
from app.api.schemas import UserOut, CompanyOut

router = APIRouter(prefix="/api/profile", tags=["Profile"])


# ============= SCHEMAS =============

class ProfileResponse(BaseModel):
    user: UserOut
    company: Optional[CompanyOut] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    title: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = None
    capabilities: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    finishing_capabilities: Optional[List[str]] = None


SUPPLIER_ONLY_FIELDS = {"capabilities", "certifications", "finishing_capabilities"}


def build_profile(storage: Storage, user: User) -> ProfileResponse:
    company = storage.get_company(user.company_id) if user.company_id else None
    return ProfileResponse(
        user=UserOut.model_validate(user),
        company=CompanyOut.model_validate(company) if company else None,
    )


def apply_profile_update(request: Request, storage: Storage, user: User, data: ProfileUpdate) -> User:
    """Shared by the customer and supplier profile endpoints."""
    fields = data.model_dump(exclude_unset=True)
    if get_role_value(user.role) != UserRole.SUPPLIER.value:
        for key in SUPPLIER_ONLY_FIELDS:
            fields.pop(key, None)
    if "email" in fields and fields["email"]:
        fields["email"] = fields["email"].lower()

    try:
        storage.update_user(user, **fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("update_profile", user_id=user.id, entity_type="user", entity_id=user.id,
                  details={"fields": sorted(fields)},
                  ip_address=request.client.host if request.client else None)
    return user


# ============= ROUTES =============

@router.get("", response_model=ProfileResponse)
async def get_profile(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return build_profile(Storage(db), user)


@router.put("", response_model=ProfileResponse)
async def update_profile(
    request: Request,
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    apply_profile_update(request, storage, user, data)
    db.commit()
    db.refresh(user)
    return build_profile(storage, user)
