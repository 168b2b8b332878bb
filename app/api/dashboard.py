"""
Customer dashboard counters.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User
from app.db.storage import Storage
from app.core.rbac import get_current_user

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


class DashboardStats(BaseModel):
    active_rfqs: int
    active_orders: int
    pending_quotes: int
    total_spent: float


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Company-wide counts: open RFQs without an order, live orders, pending quotes and paid spend."""
    return Storage(db).customer_dashboard_stats(user)
