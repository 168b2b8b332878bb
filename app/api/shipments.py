"""
Shipments API - per-shipment delivery and tracking status.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, Shipment, ShipmentStatus, TrackingStatus
from app.db.storage import Storage
from app.core.rbac import require_admin
from app.api.schemas import ShipmentOut

router = APIRouter(prefix="/api/shipments", tags=["Shipments"])


class ShipmentStatusUpdate(BaseModel):
    status: str
    delivery_date: Optional[datetime] = None


class TrackingStatusUpdate(BaseModel):
    tracking_status: str


def load_shipment(storage: Storage, shipment_id: int) -> Shipment:
    shipment = storage.get_shipment(shipment_id)
    if not shipment:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment


@router.patch("/{shipment_id}/status", response_model=ShipmentOut)
async def update_shipment_status(
    request: Request,
    shipment_id: int,
    data: ShipmentStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """shipped or delivered; a delivery date also marks tracking as delivered."""
    if data.status not in {s.value for s in ShipmentStatus}:
        raise HTTPException(status_code=400, detail="Status must be shipped or delivered")

    storage = Storage(db)
    shipment = load_shipment(storage, shipment_id)
    storage.update_shipment_status(shipment, data.status, data.delivery_date)
    storage.audit("update_shipment_status", user_id=admin.id, entity_type="shipment", entity_id=shipment.id,
                  details={"status": data.status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(shipment)
    return shipment


@router.patch("/{shipment_id}/tracking-status", response_model=ShipmentOut)
async def update_tracking_status(
    request: Request,
    shipment_id: int,
    data: TrackingStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    valid = [s.value for s in TrackingStatus]
    if data.tracking_status not in valid:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid tracking status. Must be one of: {', '.join(valid)}",
        )

    storage = Storage(db)
    shipment = load_shipment(storage, shipment_id)
    storage.update_shipment_tracking_status(shipment, data.tracking_status)
    storage.audit("update_shipment_tracking", user_id=admin.id, entity_type="shipment", entity_id=shipment.id,
                  details={"tracking_status": data.tracking_status},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(shipment)
    return shipment
