"""
Supplier portal - assigned RFQs, bids, notifications, profile and purchase orders.

Everything here is scoped to the supplier's company: colleagues share
assignments, quotes and purchase orders.
"""
import os
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, PurchaseOrder, LinkedToType, NotificationType
from app.db.storage import Storage
from app.core.rbac import require_supplier
from app.core.logging import get_logger
from app.api.schemas import (
    RFQOut, FileOut, SupplierQuoteOut, PurchaseOrderOut, PurchaseOrderStatusUpdate,
    NotificationOut, AssignmentOut,
)
from app.api.profile import ProfileResponse, ProfileUpdate, build_profile, apply_profile_update
from app.services import file_storage

logger = get_logger(__name__)

router = APIRouter(prefix="/api/supplier", tags=["Supplier"])


# ============= SCHEMAS =============

class SupplierStats(BaseModel):
    pending_rfqs: int
    submitted_quotes: int
    accepted_quotes: int
    unread_notifications: int


class AssignedRFQ(AssignmentOut):
    rfq: RFQOut
    has_quoted: bool = False


class SupplierRFQDetail(RFQOut):
    files: List[FileOut] = []
    my_quote: Optional[SupplierQuoteOut] = None


# ============= HELPERS =============

def load_supplier_po(storage: Storage, user: User, po_id: int) -> PurchaseOrder:
    po = storage.get_purchase_order(po_id)
    if not po:
        raise HTTPException(status_code=404, detail="Purchase order not found")
    if not storage.can_supplier_act_on_po(user, po):
        raise HTTPException(status_code=403, detail="Access denied")
    return po


# ============= DASHBOARD & RFQS =============

@router.get("/dashboard/stats", response_model=SupplierStats)
async def get_supplier_stats(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return Storage(db).supplier_dashboard_stats(user)


@router.get("/rfqs", response_model=List[AssignedRFQ])
async def list_assigned_rfqs(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Assigned RFQs; viewing the list clears rfq_assignment notifications."""
    storage = Storage(db)
    quoted_rfq_ids = {q.rfq_id for q in storage.list_supplier_quotes_for_supplier(user)}
    result = []
    for assignment in storage.list_assignments_for_supplier(user):
        item = AssignedRFQ(
            **AssignmentOut.model_validate(assignment).model_dump(),
            rfq=RFQOut.model_validate(assignment.rfq),
            has_quoted=assignment.rfq_id in quoted_rfq_ids,
        )
        result.append(item)

    storage.mark_all_notifications_read(user.id, NotificationType.RFQ_ASSIGNMENT.value)
    db.commit()
    return result


@router.get("/rfqs/{rfq_id}", response_model=SupplierRFQDetail)
async def get_assigned_rfq(
    rfq_id: int,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = storage.get_rfq(rfq_id)
    if not rfq:
        raise HTTPException(status_code=404, detail="RFQ not found")
    if not storage.is_supplier_assigned(user, rfq.id):
        raise HTTPException(status_code=403, detail="You are not assigned to this RFQ")

    detail = SupplierRFQDetail.model_validate(rfq)
    detail.files = [FileOut.model_validate(f) for f in storage.list_files(LinkedToType.RFQ.value, rfq.id)]
    mine = [q for q in storage.list_supplier_quotes_for_supplier(user) if q.rfq_id == rfq.id]
    detail.my_quote = SupplierQuoteOut.model_validate(mine[0]) if mine else None
    return detail


# ============= QUOTES =============

@router.post("/quote", response_model=SupplierQuoteOut, status_code=201)
async def submit_quote(
    request: Request,
    rfq_id: int = Form(...),
    price: float = Form(..., gt=0),
    lead_time: int = Form(..., ge=0),
    currency: str = Form("USD"),
    notes: Optional[str] = Form(None),
    tooling_cost: Optional[float] = Form(None),
    part_cost_per_piece: Optional[float] = Form(None),
    material_cost_per_piece: Optional[float] = Form(None),
    machining_cost_per_piece: Optional[float] = Form(None),
    finishing_cost_per_piece: Optional[float] = Form(None),
    packaging_cost_per_piece: Optional[float] = Form(None),
    shipping_cost: Optional[float] = Form(None),
    tax_percentage: Optional[float] = Form(None),
    discount_percentage: Optional[float] = Form(None),
    valid_until: Optional[datetime] = Form(None),
    payment_terms: Optional[str] = Form(None),
    quote_file: Optional[UploadFile] = File(None),
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Submit a bid on an assigned RFQ. One bid per supplier per RFQ."""
    storage = Storage(db)
    rfq = storage.get_rfq(rfq_id)
    if not rfq:
        raise HTTPException(status_code=404, detail="RFQ not found")

    try:
        storage.check_can_bid(rfq, user)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    quote_path, quote_size = None, None
    if quote_file is not None and quote_file.filename:
        quote_path, quote_size, _ = await file_storage.save_upload(
            quote_file, LinkedToType.SUPPLIER_QUOTE.value, file_storage.DOCUMENT_EXTENSIONS
        )

    try:
        quote = storage.create_supplier_quote(
            rfq,
            user,
            price=price,
            lead_time=lead_time,
            currency=currency,
            notes=notes,
            quote_file_url=quote_path,
            tooling_cost=tooling_cost,
            part_cost_per_piece=part_cost_per_piece,
            material_cost_per_piece=material_cost_per_piece,
            machining_cost_per_piece=machining_cost_per_piece,
            finishing_cost_per_piece=finishing_cost_per_piece,
            packaging_cost_per_piece=packaging_cost_per_piece,
            shipping_cost=shipping_cost,
            tax_percentage=tax_percentage,
            discount_percentage=discount_percentage,
            valid_until=valid_until,
            payment_terms=payment_terms,
        )
    except PermissionError as e:
        if quote_path:
            os.remove(quote_path)
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        if quote_path:
            os.remove(quote_path)
        raise HTTPException(status_code=400, detail=str(e))

    if quote_path:
        storage.create_file(
            user_id=user.id,
            file_name=quote_file.filename,
            file_url=quote_path,
            file_type=file_storage.classify(quote_file.filename),
            linked_to_type=LinkedToType.SUPPLIER_QUOTE.value,
            linked_to_id=quote.id,
            file_size=quote_size,
        )

    storage.notify_admins(
        NotificationType.STATUS_UPDATE.value,
        "New Supplier Quote Received",
        f"{user.name or user.email} quoted {quote.currency} {quote.price:.2f} for {rfq.project_name}",
        related_id=rfq.id,
    )
    storage.audit("submit_supplier_quote", user_id=user.id, entity_type="supplier_quote", entity_id=quote.id,
                  details={"rfq_id": rfq.id, "price": price, "lead_time": lead_time},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(quote)
    return quote


@router.get("/quotes", response_model=List[SupplierQuoteOut])
async def list_my_quotes(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return Storage(db).list_supplier_quotes_for_supplier(user)


# ============= NOTIFICATIONS =============

@router.get("/notifications", response_model=List[NotificationOut])
async def list_supplier_notifications(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return Storage(db).list_notifications(user.id)


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
async def read_supplier_notification(
    notification_id: int,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    notification = storage.get_notification(user.id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    storage.mark_notification_read(notification)
    db.commit()
    db.refresh(notification)
    return notification


# ============= PROFILE =============

@router.get("/profile", response_model=ProfileResponse)
async def get_supplier_profile(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return build_profile(Storage(db), user)


@router.put("/profile", response_model=ProfileResponse)
async def update_supplier_profile(
    request: Request,
    data: ProfileUpdate,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Includes capabilities, certifications and finishing capabilities."""
    storage = Storage(db)
    apply_profile_update(request, storage, user, data)
    db.commit()
    db.refresh(user)
    return build_profile(storage, user)


# ============= PURCHASE ORDERS =============

@router.get("/purchase-orders", response_model=List[PurchaseOrderOut])
async def list_my_purchase_orders(
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return [PurchaseOrderOut.from_po(po) for po in Storage(db).list_purchase_orders_for_supplier(user)]


async def respond_to_po(request: Request, po_id: int, accept: bool, user: User, db: Session) -> PurchaseOrderOut:
    storage = Storage(db)
    po = load_supplier_po(storage, user, po_id)
    try:
        storage.respond_to_purchase_order(po, accept)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    verdict = "accepted" if accept else "rejected"
    storage.notify_admins(
        NotificationType.STATUS_UPDATE.value,
        f"Purchase Order {verdict.capitalize()}",
        f"{user.name or user.email} {verdict} purchase order {po.order_number}",
        related_id=po.id,
    )
    storage.audit(f"purchase_order_{verdict}", user_id=user.id, entity_type="purchase_order", entity_id=po.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.post("/purchase-orders/{po_id}/accept", response_model=PurchaseOrderOut)
async def accept_purchase_order(
    request: Request,
    po_id: int,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return await respond_to_po(request, po_id, True, user, db)


@router.post("/purchase-orders/{po_id}/reject", response_model=PurchaseOrderOut)
async def reject_purchase_order(
    request: Request,
    po_id: int,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    return await respond_to_po(request, po_id, False, user, db)


@router.patch("/purchase-orders/{po_id}/status", response_model=PurchaseOrderOut)
async def advance_purchase_order(
    request: Request,
    po_id: int,
    data: PurchaseOrderStatusUpdate,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    """Move an accepted purchase order forward: in_progress, shipped, delivered."""
    storage = Storage(db)
    po = load_supplier_po(storage, user, po_id)
    previous = po.status
    try:
        storage.advance_purchase_order(po, data.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.notify_admins(
        NotificationType.STATUS_UPDATE.value,
        "Purchase Order Updated",
        f"Purchase order {po.order_number} is now {po.status.replace('_', ' ')}",
        related_id=po.id,
    )
    storage.audit("advance_purchase_order", user_id=user.id, entity_type="purchase_order", entity_id=po.id,
                  details={"from": previous, "to": po.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.post("/purchase-orders/{po_id}/invoice", response_model=PurchaseOrderOut)
async def upload_po_invoice(
    request: Request,
    po_id: int,
    invoice: UploadFile = File(...),
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    po = load_supplier_po(storage, user, po_id)
    path, _, content = await file_storage.save_upload(invoice, "supplier_invoices", file_storage.PDF_EXTENSIONS)
    if not file_storage.is_pdf(invoice.filename, content):
        os.remove(path)
        raise HTTPException(status_code=400, detail="Invoice must be a valid PDF file")

    try:
        storage.attach_supplier_invoice(po, path)
    except ValueError as e:
        os.remove(path)
        raise HTTPException(status_code=400, detail=str(e))
    storage.notify_admins(
        NotificationType.STATUS_UPDATE.value,
        "Supplier Invoice Uploaded",
        f"Invoice uploaded for purchase order {po.order_number}",
        related_id=po.id,
    )
    storage.audit("upload_supplier_invoice", user_id=user.id, entity_type="purchase_order", entity_id=po.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.get("/purchase-orders/{po_id}/file")
async def download_po_file(
    po_id: int,
    user: User = Depends(require_supplier),
    db: Session = Depends(get_db)
):
    po = load_supplier_po(Storage(db), user, po_id)
    if not po.po_file_url:
        raise HTTPException(status_code=404, detail="No file attached to this purchase order")
    path = file_storage.ensure_exists(po.po_file_url)
    return FileResponse(path, filename=f"{po.order_number}{file_storage.extension_of(po.po_file_url)}")
