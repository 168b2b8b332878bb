"""
Orders API - sales orders, their invoices, shipments and quality checks.

Customers see every order of their company; status, payment, invoice and
shipment changes are admin-only.
"""
import os
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    User, SalesOrder, LinkedToType, OrderStatus, PaymentStatus,
    QualityCheckStatus, NotificationType,
)
from app.db.storage import Storage
from app.core.rbac import get_current_user, require_admin, is_admin_user
from app.core.logging import get_logger
from app.api.schemas import OrderOut, ShipmentOut, FileOut, RFQOut, InvoiceOut
from app.services import file_storage

logger = get_logger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])


# ============= SCHEMAS =============

class OrderStatusUpdate(BaseModel):
    order_status: str


class TrackingUpdate(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=255)
    shipping_carrier: Optional[str] = Field(None, max_length=100)


class PaymentUpdate(BaseModel):
    payment_status: str


class ShipmentCreate(BaseModel):
    quantity: int
    tracking_number: Optional[str] = Field(None, max_length=255)
    shipping_carrier: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class QualityCheckApproval(BaseModel):
    approved: bool = True
    notes: Optional[str] = None


class InvoiceUploadResponse(BaseModel):
    order: OrderOut
    invoice: InvoiceOut


# ============= HELPERS =============

def load_accessible_order(storage: Storage, user: User, order_id: int) -> SalesOrder:
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not is_admin_user(user) and not storage.can_access_order(user, order):
        raise HTTPException(status_code=403, detail="Access denied")
    return order


def load_order(storage: Storage, order_id: int) -> SalesOrder:
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# ============= ROUTES =============

@router.get("", response_model=List[OrderOut])
async def list_orders(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Orders of the user's company, archived ones included."""
    return Storage(db).list_orders_for_user(user)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return load_accessible_order(Storage(db), user, order_id)


@router.patch("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    request: Request,
    order_id: int,
    data: OrderStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Move the order to any pipeline stage."""
    if data.order_status not in {s.value for s in OrderStatus}:
        raise HTTPException(status_code=400, detail="Invalid order status")

    storage = Storage(db)
    order = load_order(storage, order_id)
    previous = order.order_status
    storage.update_order_status(order, data.order_status)
    storage.create_notification(
        order.user_id,
        NotificationType.STATUS_UPDATE.value,
        "Order Status Updated",
        f"Order {order.order_number} is now {data.order_status.replace('_', ' ')}",
        related_id=order.id,
    )
    storage.audit("update_order_status", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"from": previous, "to": data.order_status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order


@router.patch("/{order_id}/tracking", response_model=OrderOut)
async def update_order_tracking(
    request: Request,
    order_id: int,
    data: TrackingUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    order = load_order(storage, order_id)
    storage.update_order_tracking(order, data.tracking_number, data.shipping_carrier)
    storage.audit("update_order_tracking", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details=data.model_dump(),
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order


@router.patch("/{order_id}/payment", response_model=OrderOut)
async def update_payment_status(
    request: Request,
    order_id: int,
    data: PaymentUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Marking an order paid also archives it."""
    if data.payment_status not in {s.value for s in PaymentStatus}:
        raise HTTPException(status_code=400, detail="Invalid payment status")

    storage = Storage(db)
    order = load_order(storage, order_id)
    storage.update_payment_status(order, data.payment_status)
    storage.audit("update_payment_status", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"payment_status": data.payment_status, "archived": order.is_archived},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order


@router.patch("/{order_id}/invoice", response_model=InvoiceUploadResponse)
async def upload_invoice(
    request: Request,
    order_id: int,
    file: UploadFile = File(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Attach a PDF invoice and raise a SINV-numbered invoice record."""
    storage = Storage(db)
    order = load_order(storage, order_id)

    path, _, content = await file_storage.save_upload(file, "invoices", file_storage.PDF_EXTENSIONS)
    if not file_storage.is_pdf(file.filename, content):
        os.remove(path)
        raise HTTPException(status_code=400, detail="Invoice must be a valid PDF file")

    invoice = storage.create_invoice(order, path)
    storage.create_notification(
        order.user_id,
        NotificationType.STATUS_UPDATE.value,
        "Invoice Available",
        f"Invoice {invoice.invoice_number} for order {order.order_number} is ready",
        related_id=order.id,
    )
    storage.audit("upload_invoice", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"invoice_number": invoice.invoice_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    db.refresh(invoice)
    return InvoiceUploadResponse(order=OrderOut.model_validate(order), invoice=InvoiceOut.model_validate(invoice))


@router.post("/{order_id}/reorder", response_model=RFQOut, status_code=201)
async def reorder(
    request: Request,
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open a new RFQ copied from a finished order, files included."""
    storage = Storage(db)
    order = load_accessible_order(storage, user, order_id)
    try:
        rfq = storage.create_reorder_rfq(order, user)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    copied = 0
    if order.rfq_id:
        for source in storage.list_files(LinkedToType.RFQ.value, order.rfq_id):
            if not os.path.isfile(source.file_url):
                logger.warning(f"Reorder {rfq.id}: source file {source.id} missing on disk, skipped")
                continue
            storage.create_file(
                user_id=user.id,
                file_name=f"REORDER_{source.file_name}",
                file_url=file_storage.copy_stored_file(source.file_url, "rfq"),
                file_size=source.file_size,
                file_type=source.file_type,
                linked_to_type=LinkedToType.RFQ.value,
                linked_to_id=rfq.id,
            )
            copied += 1

    storage.audit("reorder", user_id=user.id, entity_type="rfq", entity_id=rfq.id,
                  details={"order_id": order.id, "files_copied": copied},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(rfq)
    return rfq


@router.get("/{order_id}/shipments", response_model=List[ShipmentOut])
async def list_shipments(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    order = load_accessible_order(storage, user, order_id)
    return storage.list_shipments(order.id)


@router.post("/{order_id}/shipments", response_model=ShipmentOut, status_code=201)
async def create_shipment(
    request: Request,
    order_id: int,
    data: ShipmentCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Record a partial shipment; rejected without side effects when it exceeds what remains."""
    storage = Storage(db)
    order = load_order(storage, order_id)
    try:
        shipment = storage.record_shipment(
            order,
            data.quantity,
            tracking_number=data.tracking_number,
            shipping_carrier=data.shipping_carrier,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.create_notification(
        order.user_id,
        NotificationType.STATUS_UPDATE.value,
        "Shipment Recorded",
        f"{data.quantity} units of order {order.order_number} have shipped",
        related_id=order.id,
    )
    storage.audit("create_shipment", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"quantity": data.quantity, "remaining": order.quantity_remaining},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(shipment)
    return shipment


@router.get("/{order_id}/quality-check-files", response_model=List[FileOut])
async def list_quality_check_files(
    order_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    order = load_accessible_order(storage, user, order_id)
    return storage.list_files(LinkedToType.QUALITY_CHECK.value, order.id)


@router.post("/{order_id}/approve-quality-check", response_model=OrderOut)
async def approve_quality_check(
    request: Request,
    order_id: int,
    data: QualityCheckApproval,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Customer sign-off on quality-check evidence, or a request for revision."""
    storage = Storage(db)
    order = load_accessible_order(storage, user, order_id)
    status_value = (
        QualityCheckStatus.APPROVED.value if data.approved else QualityCheckStatus.NEEDS_REVISION.value
    )
    storage.set_quality_check(order, status_value, data.notes)
    storage.notify_admins(
        NotificationType.STATUS_UPDATE.value,
        "Quality Check Approved" if data.approved else "Quality Check Revision Requested",
        f"{user.name or user.email} responded to the quality check for order {order.order_number}",
        related_id=order.id,
    )
    storage.audit("quality_check_response", user_id=user.id, entity_type="sales_order", entity_id=order.id,
                  details={"status": status_value},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order
