"""
RFQ API - customer requests for quote and their quote responses.

Company members share RFQs: every user of the requester's company can view an
RFQ and respond to its quote.
"""
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, RFQ, UserRole, LinkedToType, QuoteStatus
from app.db.storage import Storage
from app.core.rbac import get_current_user, is_admin_user
from app.core.security import get_role_value
from app.core.logging import get_logger
from app.api.schemas import RFQOut, FileOut, QuoteOut
from app.services import file_storage
from app.services.email_service import email_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/rfqs", tags=["RFQs"])


# ============= SCHEMAS =============

class RFQCreate(BaseModel):
    project_name: str = Field(..., min_length=1, max_length=255)
    material: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., gt=0)
    material_grade: Optional[str] = Field(None, max_length=255)
    finishing: Optional[str] = Field(None, max_length=255)
    tolerance: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    special_instructions: Optional[str] = None
    manufacturing_process: Optional[str] = Field(None, max_length=255)
    manufacturing_subprocess: Optional[str] = Field(None, max_length=255)
    international_manufacturing_ok: bool = False
    # Admins may file an RFQ on a customer's behalf
    user_id: Optional[int] = None


class RFQDetail(RFQOut):
    files: List[FileOut] = []
    quote: Optional[QuoteOut] = None
    order_id: Optional[int] = None


# ============= HELPERS =============

def load_accessible_rfq(storage: Storage, user: User, rfq_id: int) -> RFQ:
    """404 when missing, 403 unless the user is an admin or shares the requester's company."""
    rfq = storage.get_rfq(rfq_id)
    if not rfq:
        raise HTTPException(status_code=404, detail="RFQ not found")
    if not is_admin_user(user) and not storage.can_access_rfq(user, rfq):
        raise HTTPException(status_code=403, detail="Access denied")
    return rfq


def rfq_detail(storage: Storage, rfq: RFQ) -> RFQDetail:
    detail = RFQDetail.model_validate(rfq)
    detail.files = [FileOut.model_validate(f) for f in storage.list_files(LinkedToType.RFQ.value, rfq.id)]
    quote = storage.get_quote_for_rfq(rfq.id)
    detail.quote = QuoteOut.from_quote(quote) if quote else None
    order = storage.get_order_for_rfq(rfq.id)
    detail.order_id = order.id if order else None
    return detail


# ============= ROUTES =============

@router.get("", response_model=List[RFQOut])
async def list_rfqs(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """RFQs of the user's company."""
    return Storage(db).list_rfqs_for_user(user)


@router.post("", response_model=RFQOut, status_code=201)
async def create_rfq(
    request: Request,
    data: RFQCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Submit a new RFQ. Drawings are attached afterwards through /api/files/upload."""
    if get_role_value(user.role) == UserRole.SUPPLIER.value and not is_admin_user(user):
        raise HTTPException(status_code=403, detail="Customer access required")

    storage = Storage(db)
    owner = user
    if data.user_id is not None and data.user_id != user.id:
        if not is_admin_user(user):
            raise HTTPException(status_code=403, detail="Admin access required")
        owner = storage.get_user(data.user_id)
        if not owner:
            raise HTTPException(status_code=404, detail="User not found")

    rfq = storage.create_rfq(owner.id, **data.model_dump(exclude={"user_id"}))
    storage.audit("create_rfq", user_id=user.id, entity_type="rfq", entity_id=rfq.id,
                  details={"project_name": rfq.project_name, "quantity": rfq.quantity},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(rfq)

    sent = await email_service.send_admin_notification(
        "rfq_submission",
        user_name=owner.name,
        user_email=owner.email,
        project_name=rfq.project_name,
        material=rfq.material,
        quantity=rfq.quantity,
    )
    if not sent:
        logger.warning(f"Admin notification for RFQ {rfq.id} was not delivered")

    return rfq


@router.get("/{rfq_id}", response_model=RFQDetail)
async def get_rfq(
    rfq_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = load_accessible_rfq(storage, user, rfq_id)
    return rfq_detail(storage, rfq)


@router.get("/{rfq_id}/quote", response_model=QuoteOut)
async def get_rfq_quote(
    rfq_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = load_accessible_rfq(storage, user, rfq_id)
    quote = storage.get_quote_for_rfq(rfq.id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return QuoteOut.from_quote(quote)


@router.post("/{rfq_id}/quote/respond", response_model=QuoteOut)
async def respond_to_quote(
    request: Request,
    rfq_id: int,
    status: str = Form(...),
    response: Optional[str] = Form(None),
    purchase_order_number: Optional[str] = Form(None),
    purchase_order: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Accept or decline the quote. "accept" accepts, anything else declines.
    Both the quote and the RFQ take the resulting status.
    """
    storage = Storage(db)
    rfq = load_accessible_rfq(storage, user, rfq_id)
    quote = storage.get_quote_for_rfq(rfq.id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    if quote.status != QuoteStatus.PENDING.value:
        raise HTTPException(status_code=400, detail="Quote has already been responded to")

    accept = status.strip().lower() == "accept"
    po_path = None
    if accept and purchase_order is not None and purchase_order.filename:
        po_path, _, _ = await file_storage.save_upload(
            purchase_order, "purchase_orders", file_storage.DOCUMENT_EXTENSIONS
        )

    storage.respond_to_quote(
        quote,
        accept=accept,
        response=response,
        purchase_order_url=po_path,
        purchase_order_number=purchase_order_number,
    )
    storage.audit("respond_quote", user_id=user.id, entity_type="sales_quote", entity_id=quote.id,
                  details={"rfq_id": rfq.id, "status": quote.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(quote)

    await email_service.send_quote_response_notification(rfq.project_name, user.name, accept)
    return QuoteOut.from_quote(quote)
