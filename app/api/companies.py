"""
Company administration - customer (CU####) and supplier (V####) organizations.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, Company, CompanyType
from app.db.storage import Storage
from app.core.rbac import require_admin
from app.api.schemas import CompanyOut, UserOut

router = APIRouter(prefix="/api/admin", tags=["Companies"])

COMPANY_TYPES = [t.value for t in CompanyType]


# ============= SCHEMAS =============

class CompanyBase(BaseModel):
    contact_email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    website: Optional[str] = Field(None, max_length=255)
    industry: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class CompanyCreate(CompanyBase):
    name: str = Field(..., min_length=1, max_length=255)
    company_type: str = CompanyType.CUSTOMER.value

    @field_validator('company_type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in COMPANY_TYPES:
            raise ValueError(f'company_type must be one of: {", ".join(COMPANY_TYPES)}')
        return v


class CompanyUpdate(CompanyBase):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class MergeRequest(BaseModel):
    primary_company_id: int
    secondary_company_ids: List[int]


class AssignNumberRequest(BaseModel):
    company_number: str


# ============= HELPERS =============

def load_company(storage: Storage, company_id: int) -> Company:
    company = storage.get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


def load_user(storage: Storage, user_id: int) -> User:
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ============= ROUTES =============

@router.get("/companies", response_model=List[CompanyOut])
async def list_companies(
    company_type: Optional[str] = Query(None, description="customer or supplier"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return Storage(db).list_companies(company_type)


@router.post("/companies", response_model=CompanyOut, status_code=201)
async def create_company(
    request: Request,
    data: CompanyCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create a company with the next free number for its type."""
    storage = Storage(db)
    company = storage.create_company(**data.model_dump())
    storage.audit("create_company", user_id=admin.id, entity_type="company", entity_id=company.id,
                  details={"name": company.name, "company_number": company.company_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(company)
    return company


@router.get("/companies/{company_id}", response_model=CompanyOut)
async def get_company(
    company_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return load_company(Storage(db), company_id)


@router.put("/companies/{company_id}", response_model=CompanyOut)
async def update_company(
    request: Request,
    company_id: int,
    data: CompanyUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    company = load_company(storage, company_id)
    fields = data.model_dump(exclude_unset=True)
    storage.update_company(company, **fields)
    storage.audit("update_company", user_id=admin.id, entity_type="company", entity_id=company.id,
                  details=fields,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(company)
    return company


@router.delete("/companies/{company_id}")
async def delete_company(
    request: Request,
    company_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a company; its users are unlinked, not deleted."""
    storage = Storage(db)
    company = load_company(storage, company_id)
    number = company.company_number
    storage.delete_company(company)
    storage.audit("delete_company", user_id=admin.id, entity_type="company", entity_id=company_id,
                  details={"company_number": number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    return {"message": f"Company {number or company_id} deleted"}


@router.post("/companies/merge", response_model=CompanyOut)
async def merge_companies(
    request: Request,
    data: MergeRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Move all users of the secondary companies into the primary and delete the secondaries."""
    storage = Storage(db)
    primary = load_company(storage, data.primary_company_id)
    try:
        storage.merge_companies(primary, data.secondary_company_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("merge_companies", user_id=admin.id, entity_type="company", entity_id=primary.id,
                  details={"merged": data.secondary_company_ids},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(primary)
    return primary


@router.post("/companies/{company_id}/assign-number", response_model=CompanyOut)
async def assign_company_number(
    request: Request,
    company_id: int,
    data: AssignNumberRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    company = load_company(storage, company_id)
    previous = company.company_number
    try:
        storage.assign_company_number(company, data.company_number)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.audit("assign_company_number", user_id=admin.id, entity_type="company", entity_id=company.id,
                  details={"from": previous, "to": company.company_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(company)
    return company


@router.get("/company-number/next")
async def next_company_number(
    company_type: str = Query(CompanyType.CUSTOMER.value),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Preview the number the next company of this type would receive."""
    if company_type not in COMPANY_TYPES:
        raise HTTPException(status_code=400, detail=f"company_type must be one of: {', '.join(COMPANY_TYPES)}")
    return {"company_number": Storage(db).next_company_number(company_type)}


@router.get("/company-number/{number}/available")
async def company_number_available(
    number: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    number = number.strip().upper()
    return {
        "company_number": number,
        "available": Storage(db).is_company_number_available(number),
    }


@router.get("/companies/{company_id}/users", response_model=List[UserOut])
async def list_company_users(
    company_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    load_company(storage, company_id)
    return storage.get_company_users(company_id)


@router.post("/users/{user_id}/link-company/{company_id}", response_model=UserOut)
async def link_user_to_company(
    request: Request,
    user_id: int,
    company_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    user = load_user(storage, user_id)
    company = load_company(storage, company_id)
    storage.link_user_to_company(user, company)
    storage.audit("link_user_company", user_id=admin.id, entity_type="user", entity_id=user.id,
                  details={"company_id": company.id},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user


@router.post("/users/{user_id}/unlink-company", response_model=UserOut)
async def unlink_user_from_company(
    request: Request,
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    user = load_user(storage, user_id)
    previous = user.company_id
    storage.unlink_user_from_company(user)
    storage.audit("unlink_user_company", user_id=admin.id, entity_type="user", entity_id=user.id,
                  details={"company_id": previous},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(user)
    return user
