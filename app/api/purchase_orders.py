"""
Admin purchase orders - S-Hub buying from suppliers (PO-NNNN).
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, PurchaseOrder, PurchaseOrderStatus, NotificationType
from app.db.storage import Storage
from app.core.rbac import require_admin
from app.api.schemas import PurchaseOrderOut, PurchaseOrderStatusUpdate
from app.services import file_storage
from app.services.email_service import email_service

router = APIRouter(prefix="/api/admin", tags=["Purchase Orders"])


def load_purchase_order(storage: Storage, po_id: int) -> PurchaseOrder:
    po = storage.get_purchase_order(po_id)
    if not po:
        raise HTTPException(status_code=404, detail="Purchase order not found")
    return po


@router.get("/purchase-orders", response_model=List[PurchaseOrderOut])
async def list_purchase_orders(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return [PurchaseOrderOut.from_po(po) for po in Storage(db).list_purchase_orders()]


@router.post("/purchase-orders", response_model=PurchaseOrderOut, status_code=201)
async def create_purchase_order(
    request: Request,
    supplier_quote_id: Optional[int] = Form(None),
    supplier_id: Optional[int] = Form(None),
    total_amount: Optional[float] = Form(None),
    rfq_id: Optional[int] = Form(None),
    delivery_date: Optional[datetime] = Form(None),
    notes: Optional[str] = Form(None),
    po_file: Optional[UploadFile] = File(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Issue a PO either from an accepted supplier quote (supplier, amount and
    delivery date are taken from the quote) or ad hoc to a supplier.
    """
    storage = Storage(db)
    supplier_quote = None
    if supplier_quote_id is not None:
        supplier_quote = storage.get_supplier_quote(supplier_quote_id)
        if not supplier_quote:
            raise HTTPException(status_code=404, detail="Supplier quote not found")
    elif supplier_id is None or total_amount is None:
        raise HTTPException(
            status_code=400,
            detail="Either supplier quote ID or supplier ID and total amount are required",
        )

    target_supplier_id = supplier_quote.supplier_id if supplier_quote else supplier_id
    supplier = storage.get_user(target_supplier_id)
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")

    po_path = None
    if po_file is not None and po_file.filename:
        po_path, _, _ = await file_storage.save_upload(po_file, "purchase_orders", file_storage.DOCUMENT_EXTENSIONS)

    po = storage.create_purchase_order(
        supplier_id=target_supplier_id,
        total_amount=total_amount,
        supplier_quote=supplier_quote,
        rfq_id=rfq_id,
        delivery_date=delivery_date,
        notes=notes,
        po_file_url=po_path,
    )
    storage.create_notification(
        supplier.id, NotificationType.ORDER_CONFIRMATION.value, "New Purchase Order",
        f"Purchase order {po.order_number} has been issued to you",
        related_id=po.id,
    )
    storage.audit("create_purchase_order", user_id=admin.id, entity_type="purchase_order", entity_id=po.id,
                  details={"order_number": po.order_number, "supplier_id": supplier.id,
                           "total_amount": po.total_amount},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)

    await email_service.send_purchase_order_notification(
        supplier.email, supplier.name, po.order_number, po.total_amount, po.delivery_date
    )
    return PurchaseOrderOut.from_po(po)


@router.patch("/purchase-orders/{po_id}/status", response_model=PurchaseOrderOut)
async def update_purchase_order_status(
    request: Request,
    po_id: int,
    data: PurchaseOrderStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    valid = [s.value for s in PurchaseOrderStatus]
    if data.status not in valid:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(valid)}")

    storage = Storage(db)
    po = load_purchase_order(storage, po_id)
    previous = po.status
    storage.update_purchase_order_status(po, data.status)
    storage.audit("update_purchase_order_status", user_id=admin.id, entity_type="purchase_order",
                  entity_id=po.id, details={"from": previous, "to": data.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.post("/purchase-orders/{po_id}/archive", response_model=PurchaseOrderOut)
async def archive_purchase_order(
    request: Request,
    po_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    po = load_purchase_order(storage, po_id)
    try:
        storage.archive_purchase_order(po)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    storage.audit("archive_purchase_order", user_id=admin.id, entity_type="purchase_order", entity_id=po.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.post("/purchase-orders/{po_id}/complete", response_model=PurchaseOrderOut)
async def complete_purchase_order(
    request: Request,
    po_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Record that the supplier has been paid."""
    storage = Storage(db)
    po = load_purchase_order(storage, po_id)
    storage.complete_purchase_order(po)
    storage.create_notification(
        po.supplier_id, NotificationType.STATUS_UPDATE.value, "Payment Completed",
        f"Payment for purchase order {po.order_number} has been completed",
        related_id=po.id,
    )
    storage.audit("complete_purchase_order", user_id=admin.id, entity_type="purchase_order", entity_id=po.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(po)
    return PurchaseOrderOut.from_po(po)


@router.get("/purchase-orders/{po_id}/invoice")
async def download_supplier_invoice(
    po_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    po = load_purchase_order(Storage(db), po_id)
    if not po.supplier_invoice_url:
        raise HTTPException(status_code=404, detail="No invoice uploaded for this purchase order")
    path = file_storage.ensure_exists(po.supplier_invoice_url)
    return FileResponse(path, filename=f"{po.order_number}-invoice.pdf")
