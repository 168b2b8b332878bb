"""
Admin RFQ workflow - review, supplier bidding, customer quotes and orders.

RFQ lifecycle:
1. Customer submits -> submitted
2. Admin assigns suppliers -> sent_to_suppliers (SQTE reference generated if missing)
3. Admin quotes directly, or finalizes from a supplier bid with a markup -> quoted
4. Customer accepts or declines -> accepted / declined
5. Admin creates the order from the quote
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    User, RFQ, RFQStatus, LinkedToType, NotificationType, SupplierQuoteStatus,
)
from app.db.storage import Storage
from app.core.rbac import require_admin
from app.core.logging import get_logger
from app.api.schemas import (
    RFQOut, FileOut, QuoteOut, OrderOut, AssignmentOut, SupplierQuoteOut,
)
from app.services import file_storage
from app.services.email_service import email_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin RFQs"])


# ============= SCHEMAS =============

class RFQStatusUpdate(BaseModel):
    status: str


class AssignSqteRequest(BaseModel):
    sqte_number: Optional[str] = Field(None, max_length=20)


class AssignSuppliersRequest(BaseModel):
    supplier_ids: List[int]


class SupplierQuoteStatusUpdate(BaseModel):
    status: str
    feedback: Optional[str] = None


class FinalizeRequest(BaseModel):
    supplier_quote_id: Optional[int] = None
    markup: Optional[float] = None


class FinalizeResponse(BaseModel):
    quote: QuoteOut
    accepted_supplier_quote_id: int
    not_selected_supplier_quote_ids: List[int]


class CreateOrderRequest(BaseModel):
    estimated_completion: Optional[datetime] = None
    notes: Optional[str] = None
    customer_purchase_order_number: Optional[str] = Field(None, max_length=100)


class SupplierQuoteWithSupplier(SupplierQuoteOut):
    supplier_name: Optional[str] = None
    supplier_email: Optional[str] = None
    files: List[FileOut] = []


# ============= HELPERS =============

def load_rfq(storage: Storage, rfq_id: int) -> RFQ:
    rfq = storage.get_rfq(rfq_id)
    if not rfq:
        raise HTTPException(status_code=404, detail="RFQ not found")
    return rfq


def supplier_recipients(storage: Storage, supplier: User) -> List[User]:
    """The supplier plus everyone at the supplier's company."""
    if not supplier.company_id:
        return [supplier]
    members = storage.get_company_users(supplier.company_id)
    return members if any(m.id == supplier.id for m in members) else members + [supplier]


# ============= RFQS =============

@router.get("/rfqs", response_model=List[RFQOut])
async def list_all_rfqs(
    status: Optional[str] = Query(None, description="Filter by RFQ status"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    rfqs = Storage(db).list_all_rfqs()
    if status:
        rfqs = [r for r in rfqs if r.status == status]
    return rfqs


@router.patch("/rfqs/{rfq_id}/status", response_model=RFQOut)
async def update_rfq_status(
    request: Request,
    rfq_id: int,
    data: RFQStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    valid = [s.value for s in RFQStatus]
    if data.status not in valid:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(valid)}")

    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    previous = rfq.status
    storage.update_rfq_status(rfq, data.status)
    storage.audit("update_rfq_status", user_id=admin.id, entity_type="rfq", entity_id=rfq.id,
                  details={"from": previous, "to": data.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(rfq)
    return rfq


@router.get("/rfqs/{rfq_id}/files", response_model=List[FileOut])
async def list_rfq_files(
    rfq_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    return storage.list_files(LinkedToType.RFQ.value, rfq.id)


@router.post("/rfqs/{rfq_id}/assign-sqte", response_model=RFQOut)
async def assign_sqte_number(
    request: Request,
    rfq_id: int,
    data: AssignSqteRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Set an explicit SQTE-NNN reference, or generate the next one."""
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    if data.sqte_number:
        rfq.sqte_number = data.sqte_number.strip().upper()
    else:
        rfq.sqte_number = None
        storage.ensure_sqte_reference(rfq)

    storage.audit("assign_sqte", user_id=admin.id, entity_type="rfq", entity_id=rfq.id,
                  details={"sqte_number": rfq.sqte_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(rfq)
    return rfq


@router.post("/rfqs/{rfq_id}/assign", response_model=List[AssignmentOut])
async def assign_suppliers(
    request: Request,
    rfq_id: int,
    data: AssignSuppliersRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Invite suppliers to bid; everyone at each supplier's company is notified and emailed."""
    if not data.supplier_ids:
        raise HTTPException(status_code=400, detail="Supplier IDs are required")

    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    try:
        assignments = storage.assign_suppliers(rfq, data.supplier_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    recipients = {}
    for assignment in assignments:
        for member in supplier_recipients(storage, storage.get_user(assignment.supplier_id)):
            recipients[member.id] = member

    for member in recipients.values():
        storage.create_notification(
            member.id,
            NotificationType.RFQ_ASSIGNMENT.value,
            "New RFQ Assignment",
            f"You have been assigned to quote {rfq.sqte_number}: {rfq.project_name}",
            related_id=rfq.id,
        )

    storage.audit("assign_suppliers", user_id=admin.id, entity_type="rfq", entity_id=rfq.id,
                  details={"supplier_ids": data.supplier_ids, "sqte_number": rfq.sqte_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()

    for member in recipients.values():
        await email_service.send_supplier_rfq_notification(
            member.email, member.name, rfq.project_name, rfq.material, rfq.quantity, rfq.sqte_number
        )

    for assignment in assignments:
        db.refresh(assignment)
    return assignments


@router.get("/rfqs/{rfq_id}/supplier-quotes", response_model=List[SupplierQuoteWithSupplier])
async def list_rfq_supplier_quotes(
    rfq_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Supplier bids on the RFQ, cheapest first."""
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    result = []
    for quote in storage.list_supplier_quotes_for_rfq(rfq.id):
        item = SupplierQuoteWithSupplier.model_validate(quote)
        item.supplier_name = quote.supplier.name if quote.supplier else None
        item.supplier_email = quote.supplier.email if quote.supplier else None
        item.files = [
            FileOut.model_validate(f)
            for f in storage.list_files(LinkedToType.SUPPLIER_QUOTE.value, quote.id)
        ]
        result.append(item)
    return result


@router.patch("/supplier-quotes/{quote_id}/status", response_model=SupplierQuoteOut)
async def update_supplier_quote_status(
    request: Request,
    quote_id: int,
    data: SupplierQuoteStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    valid = [s.value for s in SupplierQuoteStatus]
    if data.status not in valid:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(valid)}")

    storage = Storage(db)
    quote = storage.get_supplier_quote(quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Supplier quote not found")

    storage.update_supplier_quote_status(quote, data.status, data.feedback)
    rfq = storage.get_rfq(quote.rfq_id)
    supplier = storage.get_user(quote.supplier_id)

    if data.status == SupplierQuoteStatus.ACCEPTED.value:
        storage.create_notification(
            supplier.id, NotificationType.STATUS_UPDATE.value, "Quote Accepted",
            f"Your quote for {rfq.project_name} has been accepted",
            related_id=rfq.id,
        )
    elif data.status == SupplierQuoteStatus.NOT_SELECTED.value:
        message = f"Your quote for {rfq.project_name} was not selected"
        if data.feedback:
            message += f". Feedback: {data.feedback}"
        storage.create_notification(
            supplier.id, NotificationType.STATUS_UPDATE.value, "Quote Not Selected",
            message, related_id=rfq.id,
        )

    storage.audit("update_supplier_quote_status", user_id=admin.id, entity_type="supplier_quote",
                  entity_id=quote.id, details={"status": data.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(quote)

    if data.status == SupplierQuoteStatus.ACCEPTED.value:
        await email_service.send_quote_accepted_notification(
            supplier.email, supplier.name, rfq.project_name, quote.price, quote.currency or "USD"
        )
    elif data.status == SupplierQuoteStatus.NOT_SELECTED.value:
        await email_service.send_quote_not_selected_notification(
            supplier.email, supplier.name, rfq.project_name, data.feedback
        )
    return quote


@router.post("/rfqs/{rfq_id}/finalize", response_model=FinalizeResponse)
async def finalize_rfq(
    request: Request,
    rfq_id: int,
    data: FinalizeRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Build the customer quote from the winning supplier bid plus a markup percentage."""
    if data.supplier_quote_id is None or data.markup is None:
        raise HTTPException(status_code=400, detail="Supplier quote ID and numeric markup are required")

    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    winner = storage.get_supplier_quote(data.supplier_quote_id)
    if not winner:
        raise HTTPException(status_code=404, detail="Supplier quote not found")

    try:
        sales_quote, losers = storage.finalize_rfq(rfq, winner, data.markup)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.create_notification(
        winner.supplier_id, NotificationType.STATUS_UPDATE.value,
        "Congratulations! Your Quote Was Selected",
        f"Your quote for {rfq.project_name} was selected",
        related_id=rfq.id,
    )
    for quote in losers:
        storage.create_notification(
            quote.supplier_id, NotificationType.STATUS_UPDATE.value,
            "Quote Update - Not Selected",
            f"Your quote for {rfq.project_name} was not selected this time",
            related_id=rfq.id,
        )

    storage.audit("finalize_rfq", user_id=admin.id, entity_type="rfq", entity_id=rfq.id,
                  details={"supplier_quote_id": winner.id, "markup": data.markup,
                           "quote_number": sales_quote.quote_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(sales_quote)

    winner_user = storage.get_user(winner.supplier_id)
    await email_service.send_quote_accepted_notification(
        winner_user.email, winner_user.name, rfq.project_name, winner.price, winner.currency or "USD"
    )
    for quote in losers:
        loser = storage.get_user(quote.supplier_id)
        await email_service.send_quote_not_selected_notification(loser.email, loser.name, rfq.project_name)

    customer = storage.get_user(rfq.user_id)
    await email_service.send_customer_quote_notification(
        customer.email, customer.name, rfq.project_name,
        sales_quote.amount, sales_quote.currency or "USD", sales_quote.valid_until,
    )

    return FinalizeResponse(
        quote=QuoteOut.from_quote(sales_quote),
        accepted_supplier_quote_id=winner.id,
        not_selected_supplier_quote_ids=[q.id for q in losers],
    )


# ============= CUSTOMER QUOTES =============

@router.get("/quotes", response_model=List[QuoteOut])
async def list_all_quotes(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return [QuoteOut.from_quote(q) for q in Storage(db).list_all_quotes()]


@router.get("/rfqs/{rfq_id}/quote", response_model=QuoteOut)
async def get_rfq_quote(
    rfq_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    quote = storage.get_quote_for_rfq(rfq.id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return QuoteOut.from_quote(quote)


@router.post("/rfqs/{rfq_id}/quote", response_model=QuoteOut, status_code=201)
async def create_quote(
    request: Request,
    rfq_id: int,
    amount: Optional[float] = Form(None),
    valid_until: Optional[datetime] = Form(None),
    currency: str = Form("USD"),
    estimated_delivery_date: Optional[datetime] = Form(None),
    notes: Optional[str] = Form(None),
    quote_file: Optional[UploadFile] = File(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Price the RFQ; the RFQ moves to quoted and the customer is emailed."""
    if amount is None or valid_until is None:
        raise HTTPException(status_code=400, detail="Amount and valid until date are required")
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero")

    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)

    quote_path = None
    if quote_file is not None and quote_file.filename:
        quote_path, _, _ = await file_storage.save_upload(quote_file, "quotes", file_storage.DOCUMENT_EXTENSIONS)

    quote = storage.create_quote(
        rfq,
        amount=amount,
        valid_until=valid_until,
        currency=currency,
        estimated_delivery_date=estimated_delivery_date,
        notes=notes,
        quote_file_url=quote_path,
    )
    storage.create_notification(
        rfq.user_id, NotificationType.STATUS_UPDATE.value, "Quote Ready",
        f"Your quote for {rfq.project_name} is ready for review",
        related_id=rfq.id,
    )
    storage.audit("create_quote", user_id=admin.id, entity_type="sales_quote", entity_id=quote.id,
                  details={"rfq_id": rfq.id, "amount": amount, "quote_number": quote.quote_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(quote)

    customer = storage.get_user(rfq.user_id)
    await email_service.send_customer_quote_notification(
        customer.email, customer.name, rfq.project_name, quote.amount, quote.currency or "USD", quote.valid_until
    )
    return QuoteOut.from_quote(quote)


# ============= ORDERS =============

@router.post("/rfqs/{rfq_id}/create-order", response_model=OrderOut, status_code=201)
async def create_order(
    request: Request,
    rfq_id: int,
    data: Optional[CreateOrderRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create the RFQ's single order from its quote; due date defaults to 30 days out."""
    data = data or CreateOrderRequest()
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    try:
        order = storage.create_order_from_rfq(
            rfq,
            estimated_completion=data.estimated_completion,
            notes=data.notes,
            customer_purchase_order_number=data.customer_purchase_order_number,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    storage.create_notification(
        rfq.user_id, NotificationType.ORDER_CONFIRMATION.value, "Order Confirmed",
        f"Order {order.order_number} has been created for {rfq.project_name}",
        related_id=order.id,
    )
    storage.audit("create_order", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"rfq_id": rfq.id, "order_number": order.order_number},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order


@router.get("/rfqs/{rfq_id}/order", response_model=OrderOut)
async def get_rfq_order(
    rfq_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    rfq = load_rfq(storage, rfq_id)
    order = storage.get_order_for_rfq(rfq.id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/orders", response_model=List[OrderOut])
async def list_active_orders(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return Storage(db).list_all_orders(archived=False)


@router.get("/orders/archived", response_model=List[OrderOut])
async def list_archived_orders(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return Storage(db).list_all_orders(archived=True)


@router.post("/orders/{order_id}/reopen", response_model=OrderOut)
async def reopen_order(
    request: Request,
    order_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Unarchive an order and reset its payment to unpaid."""
    storage = Storage(db)
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    storage.reopen_order(order)
    storage.audit("reopen_order", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(order)
    return order


@router.post("/orders/{order_id}/quality-check-files", response_model=List[FileOut], status_code=201)
async def upload_quality_check_files(
    request: Request,
    order_id: int,
    files: List[UploadFile] = File(...),
    notes: Optional[str] = Form(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Attach inspection evidence and ask the customer to approve it."""
    storage = Storage(db)
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    stored = []
    for upload in files:
        path, size, _ = await file_storage.save_upload(
            upload, LinkedToType.QUALITY_CHECK.value, file_storage.ATTACHMENT_EXTENSIONS
        )
        stored.append(storage.create_file(
            user_id=admin.id,
            file_name=upload.filename or "unnamed",
            file_url=path,
            file_size=size,
            file_type=file_storage.classify(upload.filename),
            linked_to_type=LinkedToType.QUALITY_CHECK.value,
            linked_to_id=order.id,
        ))

    storage.set_quality_check(order, "pending", notes)
    storage.create_notification(
        order.user_id, NotificationType.STATUS_UPDATE.value, "Quality Check Ready",
        f"Quality check documents for order {order.order_number} are ready for your review",
        related_id=order.id,
    )
    storage.audit("upload_quality_check", user_id=admin.id, entity_type="sales_order", entity_id=order.id,
                  details={"files": [f.file_name for f in stored]},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    for f in stored:
        db.refresh(f)
    return stored
