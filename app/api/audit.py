"""
Audit trail API routes (admin only).

Rows are written by ``Storage.audit`` alongside the mutation they describe;
these routes only read them.
"""
from typing import List, Optional
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc, func

from app.db.session import get_db
from app.db.models import AuditLog, User
from app.core.rbac import require_admin

router = APIRouter(prefix="/api/admin/audit", tags=["Audit"])

SUMMARY_WINDOW_DAYS = 7


# ============= SCHEMAS =============

class AuditEntry(BaseModel):
    id: int
    timestamp: Optional[datetime]
    user_id: Optional[int]
    user_email: Optional[str]
    user_name: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    details: Optional[dict]
    ip_address: Optional[str]

    @classmethod
    def from_log(cls, log: AuditLog) -> "AuditEntry":
        return cls(
            id=log.id,
            timestamp=log.timestamp,
            user_id=log.user_id,
            user_email=log.user.email if log.user else None,
            user_name=log.user.name if log.user else None,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            details=log.details,
            ip_address=log.ip_address,
        )


class ActionCount(BaseModel):
    action: str
    count: int


class UserActivity(BaseModel):
    user_id: int
    email: Optional[str]
    role: Optional[str]
    count: int


class AuditSummary(BaseModel):
    total_events: int
    events_today: int
    window_days: int
    top_actions: List[ActionCount]
    top_users: List[UserActivity]


# ============= ROUTES =============

@router.get("/logs", response_model=List[AuditEntry])
async def list_audit_logs(
    action: Optional[str] = Query(None, description="e.g. create_order, finalize_rfq"),
    entity_type: Optional[str] = Query(None, description="e.g. rfq, sales_order, purchase_order"),
    entity_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Newest first."""
    query = db.query(AuditLog).options(joinedload(AuditLog.user))
    filters = {
        AuditLog.action: action,
        AuditLog.entity_type: entity_type,
        AuditLog.entity_id: entity_id,
        AuditLog.user_id: user_id,
    }
    for column, value in filters.items():
        if value is not None:
            query = query.filter(column == value)
    if start_date:
        query = query.filter(AuditLog.timestamp >= start_date)
    if end_date:
        query = query.filter(AuditLog.timestamp <= end_date)

    logs = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).offset(offset).limit(limit).all()
    return [AuditEntry.from_log(log) for log in logs]


@router.get("/entity/{entity_type}/{entity_id}", response_model=List[AuditEntry])
async def entity_history(
    entity_type: str,
    entity_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Everything that happened to one RFQ, order, quote or PO, oldest first."""
    logs = db.query(AuditLog).options(joinedload(AuditLog.user)).filter(
        AuditLog.entity_type == entity_type,
        AuditLog.entity_id == entity_id,
    ).order_by(AuditLog.timestamp, AuditLog.id).all()
    return [AuditEntry.from_log(log) for log in logs]


@router.get("/summary", response_model=AuditSummary)
async def get_audit_summary(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    now = datetime.now(timezone.utc)
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    window_start = now - timedelta(days=SUMMARY_WINDOW_DAYS)

    total = db.query(func.count(AuditLog.id)).scalar() or 0
    today_count = db.query(func.count(AuditLog.id)).filter(AuditLog.timestamp >= today_start).scalar() or 0

    event_count = func.count(AuditLog.id).label("count")
    action_rows = db.query(AuditLog.action, event_count).filter(
        AuditLog.timestamp >= window_start
    ).group_by(AuditLog.action).order_by(desc("count")).limit(10).all()

    user_rows = db.query(User.id, User.email, User.role, event_count).join(
        AuditLog, AuditLog.user_id == User.id
    ).filter(
        AuditLog.timestamp >= window_start
    ).group_by(User.id, User.email, User.role).order_by(desc("count")).limit(10).all()

    return AuditSummary(
        total_events=total,
        events_today=today_count,
        window_days=SUMMARY_WINDOW_DAYS,
        top_actions=[ActionCount(action=a, count=c) for a, c in action_rows],
        top_users=[UserActivity(user_id=uid, email=email, role=role, count=c) for uid, email, role, c in user_rows],
    )
