"""
Quotes API - customer access to quote documents and purchase-order uploads.
"""
import os
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, SalesQuote
from app.db.storage import Storage
from app.core.rbac import get_current_user, is_admin_user
from app.api.schemas import QuoteOut
from app.services import file_storage

router = APIRouter(prefix="/api/quotes", tags=["Quotes"])


def load_accessible_quote(storage: Storage, user: User, quote_id: int) -> SalesQuote:
    quote = storage.get_quote(quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    if not is_admin_user(user):
        rfq = storage.get_rfq(quote.rfq_id)
        if not rfq or not storage.can_access_rfq(user, rfq):
            raise HTTPException(status_code=403, detail="Access denied")
    return quote


# ============= ROUTES =============

@router.get("", response_model=List[QuoteOut])
async def list_quotes(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Quotes on RFQs of the user's company."""
    return [QuoteOut.from_quote(q) for q in Storage(db).list_quotes_for_user(user)]


@router.get("/{quote_id}/download")
async def download_quote(
    quote_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quote = load_accessible_quote(Storage(db), user, quote_id)
    path = file_storage.ensure_exists(quote.quote_file_url)
    return FileResponse(
        path,
        filename=f"{quote.quote_number}{os.path.splitext(path)[1] or '.pdf'}",
    )


@router.post("/{quote_id}/purchase-order", response_model=QuoteOut)
async def upload_purchase_order(
    request: Request,
    quote_id: int,
    file: UploadFile = File(...),
    po_number: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Attach the customer's purchase order to an accepted quote."""
    storage = Storage(db)
    quote = load_accessible_quote(storage, user, quote_id)

    path, size, _ = await file_storage.save_upload(file, "purchase_orders", file_storage.DOCUMENT_EXTENSIONS)
    storage.attach_purchase_order(quote, path, po_number)
    storage.audit("upload_purchase_order", user_id=user.id, entity_type="sales_quote", entity_id=quote.id,
                  details={"po_number": po_number, "size": size},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(quote)
    return QuoteOut.from_quote(quote)
