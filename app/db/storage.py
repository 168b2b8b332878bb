"""
Storage layer: one repository class wrapping the ORM session.

Methods add and flush; the caller owns the transaction and commits once per
request. Business-rule violations raise ValueError with a user-facing message,
lookups that miss return None.
"""
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, and_, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger, audit_logger
from app.core.security import get_role_value
from app.db.models import (
    AuditLog, Company, CompanyType, User, UserRole, PendingRegistration,
    RFQ, RFQStatus, StoredFile, LinkedToType, SalesQuote, QuoteStatus,
    SalesOrder, OrderStatus, PaymentStatus, QualityCheckStatus, SalesInvoice,
    Shipment, ShipmentStatus, TrackingStatus, RfqAssignment, AssignmentStatus,
    SupplierQuote, SupplierQuoteStatus, PurchaseOrder, PurchaseOrderStatus,
    Notification, NotificationType, Message, MessageAttachment,
)
from app.services import numbering

logger = get_logger(__name__)

REORDERABLE_STATUSES = {
    OrderStatus.DELIVERED.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.PACKING.value,
}


SUPPLIER_PO_PIPELINE = (
    PurchaseOrderStatus.ACCEPTED.value,
    PurchaseOrderStatus.IN_PROGRESS.value,
    PurchaseOrderStatus.SHIPPED.value,
    PurchaseOrderStatus.DELIVERED.value,
)
INVOICEABLE_PO_STATUSES = {
    PurchaseOrderStatus.DELIVERED.value,
    PurchaseOrderStatus.COMPLETED.value,
}


class NumberGenerationError(Exception):
    """Raised when a unique sequence number could not be allocated."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from databases without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_expired(expiry: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expiry is None:
        return True
    return as_utc(expiry) < (now or utcnow())


class Storage:
    def __init__(self, db: Session):
        self.db = db

    # ============= NUMBERING =============

    def _allocate(self, label: str, generate: Callable[[], str], apply: Callable[[str], object]):
        """
        Insert a row carrying a freshly generated unique number.

        Each attempt runs in a savepoint; a unique-constraint conflict rolls the
        savepoint back and the number is recomputed from the current rows.
        """
        attempts = settings.NUMBER_GENERATION_RETRIES
        for attempt in range(1, attempts + 1):
            number = generate()
            savepoint = self.db.begin_nested()
            try:
                obj = apply(number)
                self.db.flush()
                savepoint.commit()
                return obj
            except IntegrityError:
                savepoint.rollback()
                if generate() == number:
                    # Number is still free, so another constraint failed
                    raise
                logger.warning(f"{label} number {number} already taken (attempt {attempt}/{attempts})")
        raise NumberGenerationError(f"Could not allocate a unique {label} number")

    def next_company_number(self, company_type: str) -> str:
        prefix = numbering.company_prefix(company_type)
        rows = self.db.query(Company.company_number).filter(
            Company.company_number.like(f"{prefix}%")
        ).all()
        seq = numbering.next_suffix((r[0] for r in rows), prefix)
        return numbering.format_company_number(company_type, seq)

    def next_user_number(self) -> str:
        rows = self.db.query(User.user_number).filter(User.user_number.isnot(None)).all()
        return numbering.next_user_number(r[0] for r in rows)

    def _next_yearly_number(self, column, prefix: str) -> str:
        year_prefix = numbering.yearly_prefix(prefix)
        rows = self.db.query(column).filter(column.like(f"{year_prefix}%")).all()
        seq = numbering.next_suffix((r[0] for r in rows), year_prefix)
        return numbering.format_yearly_number(prefix, seq)

    def next_quote_number(self) -> str:
        return self._next_yearly_number(SalesQuote.quote_number, numbering.QUOTE_PREFIX)

    def next_order_number(self) -> str:
        return self._next_yearly_number(SalesOrder.order_number, numbering.ORDER_PREFIX)

    def next_invoice_number(self) -> str:
        return self._next_yearly_number(SalesInvoice.invoice_number, numbering.INVOICE_PREFIX)

    def next_purchase_order_number(self) -> str:
        prefix = f"{numbering.PURCHASE_ORDER_PREFIX}-"
        rows = self.db.query(PurchaseOrder.order_number).all()
        seq = numbering.next_suffix((r[0] for r in rows), prefix)
        return numbering.format_purchase_order_number(seq)

    def next_sqte_reference(self) -> str:
        rows = self.db.query(RFQ.sqte_number).filter(RFQ.sqte_number.isnot(None)).all()
        highest = 0
        for (value,) in rows:
            suffix = numbering.parse_sqte_reference(value)
            if suffix is not None and suffix > highest:
                highest = suffix
        return numbering.format_sqte_reference(highest + 1)

    # ============= COMPANY SHARING =============

    def company_user_ids(self, user: User) -> List[int]:
        """Ids of every user sharing the requester's company, the requester included."""
        if not user.company_id:
            return [user.id]
        ids = [
            row[0] for row in
            self.db.query(User.id).filter(User.company_id == user.company_id).all()
        ]
        if user.id not in ids:
            ids.append(user.id)
        return ids

    # ============= USERS =============

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email_role(self, email: str, role: str) -> Optional[User]:
        return self.db.query(User).filter(
            func.lower(User.email) == email.lower(),
            User.role == role,
        ).first()

    def get_users_by_email(self, email: str) -> List[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).all()

    def list_users(self, role: Optional[str] = None) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        return query.order_by(desc(User.created_at), desc(User.id)).all()

    def get_admin_users(self) -> List[User]:
        return self.db.query(User).filter(
            or_(User.is_admin.is_(True), User.role == UserRole.ADMIN.value)
        ).all()

    def create_user(self, email: str, hashed_password: str, role: str = UserRole.CUSTOMER.value, **fields) -> User:
        """Create a user; (email, role) must be unique."""
        role = get_role_value(role)
        if self.get_user_by_email_role(email, role):
            raise ValueError("User already exists with this role")

        def apply(number: str) -> User:
            user = User(
                email=email.lower(),
                hashed_password=hashed_password,
                role=role,
                user_number=number,
                **fields,
            )
            self.db.add(user)
            return user

        try:
            return self._allocate("user", self.next_user_number, apply)
        except IntegrityError:
            raise ValueError("User already exists with this role")

    def update_user(self, user: User, **fields) -> User:
        role = fields.get("role")
        email = fields.get("email")
        if role is not None or email is not None:
            target_role = get_role_value(role) if role is not None else get_role_value(user.role)
            target_email = email or user.email
            existing = self.get_user_by_email_role(target_email, target_role)
            if existing and existing.id != user.id:
                raise ValueError("User already exists with this role")
        for key, value in fields.items():
            setattr(user, key, get_role_value(value) if key == "role" else value)
        self.db.flush()
        return user

    def delete_user(self, user: User) -> None:
        owns_work = (
            self.db.query(RFQ.id).filter(RFQ.user_id == user.id).first()
            or self.db.query(SupplierQuote.id).filter(SupplierQuote.supplier_id == user.id).first()
            or self.db.query(PurchaseOrder.id).filter(PurchaseOrder.supplier_id == user.id).first()
            or self.db.query(SalesOrder.id).filter(SalesOrder.user_id == user.id).first()
            or self.db.query(StoredFile.id).filter(StoredFile.user_id == user.id).first()
        )
        if owns_work:
            raise ValueError("Cannot delete a user who owns RFQs, orders, quotes, purchase orders or uploaded files")
        self.db.query(Notification).filter(Notification.user_id == user.id).delete(synchronize_session=False)
        self.db.query(RfqAssignment).filter(RfqAssignment.supplier_id == user.id).delete(synchronize_session=False)
        # Rows that reference the user without cascade
        self.db.query(AuditLog).filter(AuditLog.user_id == user.id).update(
            {AuditLog.user_id: None}, synchronize_session=False
        )
        self.db.delete(user)
        self.db.flush()

    # ============= PENDING REGISTRATIONS =============

    def get_pending_registration(self, email: str, role: str) -> Optional[PendingRegistration]:
        return self.db.query(PendingRegistration).filter(
            func.lower(PendingRegistration.email) == email.lower(),
            PendingRegistration.role == role,
        ).first()

    def list_pending_registrations(self) -> List[PendingRegistration]:
        return self.db.query(PendingRegistration).order_by(desc(PendingRegistration.created_at)).all()

    def save_pending_registration(
        self,
        email: str,
        role: str,
        hashed_password: str,
        name: str,
        company_name: Optional[str],
        code: str,
    ) -> PendingRegistration:
        """Create or refresh the pending signup for (email, role) with a new code."""
        expiry = utcnow() + timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
        pending = self.get_pending_registration(email, role)
        if pending is None:
            pending = PendingRegistration(email=email.lower(), role=role)
            self.db.add(pending)
        pending.hashed_password = hashed_password
        pending.name = name
        pending.company_name = company_name
        pending.verification_code = code
        pending.verification_code_expiry = expiry
        self.db.flush()
        return pending

    def refresh_pending_code(self, pending: PendingRegistration, code: str) -> PendingRegistration:
        pending.verification_code = code
        pending.verification_code_expiry = utcnow() + timedelta(
            minutes=settings.VERIFICATION_CODE_TTL_MINUTES
        )
        self.db.flush()
        return pending

    def delete_pending_registration(self, pending: PendingRegistration) -> None:
        self.db.delete(pending)
        self.db.flush()

    def complete_registration(self, pending: PendingRegistration) -> User:
        """Turn a verified signup into a user, creating its company when one was named."""
        company_id = None
        if pending.company_name:
            company_type = (
                CompanyType.SUPPLIER.value
                if pending.role == UserRole.SUPPLIER.value
                else CompanyType.CUSTOMER.value
            )
            company = self.find_or_create_company(pending.company_name, company_type)
            company_id = company.id

        user = self.create_user(
            email=pending.email,
            hashed_password=pending.hashed_password,
            role=pending.role,
            name=pending.name,
            company_id=company_id,
            company_name_input=pending.company_name,
            is_verified=True,
        )
        self.delete_pending_registration(pending)
        return user

    # ============= COMPANIES =============

    def get_company(self, company_id: int) -> Optional[Company]:
        return self.db.query(Company).filter(Company.id == company_id).first()

    def get_company_by_number(self, number: str) -> Optional[Company]:
        return self.db.query(Company).filter(Company.company_number == number).first()

    def list_companies(self, company_type: Optional[str] = None) -> List[Company]:
        query = self.db.query(Company)
        if company_type:
            query = query.filter(Company.company_type == company_type)
        return query.order_by(Company.company_number).all()

    def create_company(self, name: str, company_type: str = CompanyType.CUSTOMER.value, **fields) -> Company:
        def apply(number: str) -> Company:
            company = Company(name=name, company_type=company_type, company_number=number, **fields)
            self.db.add(company)
            return company

        return self._allocate(
            "company",
            lambda: self.next_company_number(company_type),
            apply,
        )

    def find_or_create_company(self, name: str, company_type: str) -> Company:
        company = self.db.query(Company).filter(
            func.lower(Company.name) == name.strip().lower(),
            Company.company_type == company_type,
        ).first()
        if company:
            return company
        return self.create_company(name.strip(), company_type)

    def update_company(self, company: Company, **fields) -> Company:
        for key, value in fields.items():
            setattr(company, key, value)
        self.db.flush()
        return company

    def is_company_number_available(self, number: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(Company).filter(Company.company_number == number)
        if exclude_id is not None:
            query = query.filter(Company.id != exclude_id)
        return query.first() is None

    def assign_company_number(self, company: Company, number: str) -> Company:
        number = number.strip().upper()
        if not numbering.is_valid_company_number(number):
            raise ValueError("Company number must look like CU0001 or V0001")
        if not self.is_company_number_available(number, exclude_id=company.id):
            raise ValueError("Company number is already in use")
        company.company_number = number
        self.db.flush()
        return company

    def get_company_users(self, company_id: int) -> List[User]:
        return self.db.query(User).filter(User.company_id == company_id).order_by(User.id).all()

    def link_user_to_company(self, user: User, company: Company) -> User:
        user.company_id = company.id
        self.db.flush()
        return user

    def unlink_user_from_company(self, user: User) -> User:
        user.company_id = None
        self.db.flush()
        return user

    def merge_companies(self, primary: Company, secondary_ids: Iterable[int]) -> Company:
        """Repoint users of the secondary companies to the primary, then delete the secondaries."""
        secondary_ids = [cid for cid in secondary_ids if cid != primary.id]
        if not secondary_ids:
            raise ValueError("At least one secondary company is required")
        secondaries = self.db.query(Company).filter(Company.id.in_(secondary_ids)).all()
        if len(secondaries) != len(set(secondary_ids)):
            raise ValueError("One or more companies to merge were not found")

        self.db.query(User).filter(User.company_id.in_(secondary_ids)).update(
            {User.company_id: primary.id}, synchronize_session=False
        )
        for company in secondaries:
            self.db.delete(company)
        self.db.flush()
        self.db.expire_all()
        return primary

    def delete_company(self, company: Company) -> None:
        self.db.query(User).filter(User.company_id == company.id).update(
            {User.company_id: None}, synchronize_session=False
        )
        self.db.delete(company)
        self.db.flush()

    # ============= RFQS =============

    def create_rfq(self, user_id: int, **fields) -> RFQ:
        rfq = RFQ(user_id=user_id, status=RFQStatus.SUBMITTED.value, **fields)
        self.db.add(rfq)
        self.db.flush()
        return rfq

    def get_rfq(self, rfq_id: int) -> Optional[RFQ]:
        return self.db.query(RFQ).filter(RFQ.id == rfq_id).first()

    def list_rfqs_for_user(self, user: User) -> List[RFQ]:
        return self.db.query(RFQ).filter(
            RFQ.user_id.in_(self.company_user_ids(user))
        ).order_by(desc(RFQ.created_at), desc(RFQ.id)).all()

    def list_all_rfqs(self) -> List[RFQ]:
        return self.db.query(RFQ).order_by(desc(RFQ.created_at), desc(RFQ.id)).all()

    def can_access_rfq(self, user: User, rfq: RFQ) -> bool:
        return rfq.user_id in self.company_user_ids(user)

    def update_rfq_status(self, rfq: RFQ, status: str) -> RFQ:
        rfq.status = status
        rfq.updated_at = utcnow()
        self.db.flush()
        return rfq

    def ensure_sqte_reference(self, rfq: RFQ) -> RFQ:
        """Give the RFQ an SQTE-NNN routing reference unless it already has one."""
        if not rfq.sqte_number:
            rfq.sqte_number = self.next_sqte_reference()
            self.db.flush()
        return rfq

    # ============= FILES =============

    def create_file(
        self,
        user_id: int,
        file_name: str,
        file_url: str,
        file_type: str,
        linked_to_type: str,
        linked_to_id: int,
        file_size: Optional[int] = None,
    ) -> StoredFile:
        stored = StoredFile(
            user_id=user_id,
            file_name=file_name,
            file_url=file_url,
            file_size=file_size,
            file_type=file_type,
            linked_to_type=linked_to_type,
            linked_to_id=linked_to_id,
        )
        self.db.add(stored)
        self.db.flush()
        return stored

    def get_file(self, file_id: int) -> Optional[StoredFile]:
        return self.db.query(StoredFile).filter(StoredFile.id == file_id).first()

    def list_files(self, linked_to_type: str, linked_to_id: int) -> List[StoredFile]:
        return self.db.query(StoredFile).filter(
            StoredFile.linked_to_type == linked_to_type,
            StoredFile.linked_to_id == linked_to_id,
        ).order_by(StoredFile.id).all()

    def resolve_file_target(self, linked_to_type: str, linked_to_id: int):
        """Load the entity a file is linked to."""
        kind = LinkedToType(get_role_value(linked_to_type))
        if kind == LinkedToType.RFQ:
            return self.get_rfq(linked_to_id)
        if kind in (LinkedToType.ORDER, LinkedToType.QUALITY_CHECK):
            return self.get_order(linked_to_id)
        if kind == LinkedToType.SUPPLIER_QUOTE:
            return self.get_supplier_quote(linked_to_id)
        raise ValueError(f"Unsupported file link: {linked_to_type}")

    def can_access_file(self, user: User, stored: StoredFile, is_admin: bool = False) -> bool:
        """
        Owner, admin, or a member of the owner's company may download.
        For RFQ files an assigned supplier may too; supplier-quote files are
        visible to the submitting supplier's company.
        """
        if is_admin or stored.user_id in self.company_user_ids(user):
            return True

        target = self.resolve_file_target(stored.linked_to_type, stored.linked_to_id)
        if target is None:
            return False

        kind = LinkedToType(get_role_value(stored.linked_to_type))
        if kind == LinkedToType.RFQ:
            return self.can_access_rfq(user, target) or self.is_supplier_assigned(user, target.id)
        if kind in (LinkedToType.ORDER, LinkedToType.QUALITY_CHECK):
            return target.user_id in self.company_user_ids(user)
        if kind == LinkedToType.SUPPLIER_QUOTE:
            return target.supplier_id in self.company_user_ids(user)
        return False

    # ============= SALES QUOTES =============

    def create_quote(
        self,
        rfq: RFQ,
        amount: float,
        valid_until: datetime,
        currency: str = "USD",
        estimated_delivery_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        quote_file_url: Optional[str] = None,
    ) -> SalesQuote:
        """Create a pending quote and move the RFQ to quoted."""

        def apply(number: str) -> SalesQuote:
            quote = SalesQuote(
                rfq_id=rfq.id,
                quote_number=number,
                amount=amount,
                currency=currency or "USD",
                valid_until=valid_until,
                estimated_delivery_date=estimated_delivery_date,
                notes=notes,
                quote_file_url=quote_file_url,
                status=QuoteStatus.PENDING.value,
            )
            self.db.add(quote)
            return quote

        quote = self._allocate("quote", self.next_quote_number, apply)
        self.update_rfq_status(rfq, RFQStatus.QUOTED.value)
        return quote

    def get_quote(self, quote_id: int) -> Optional[SalesQuote]:
        return self.db.query(SalesQuote).filter(SalesQuote.id == quote_id).first()

    def get_quote_for_rfq(self, rfq_id: int) -> Optional[SalesQuote]:
        return self.db.query(SalesQuote).filter(
            SalesQuote.rfq_id == rfq_id
        ).order_by(desc(SalesQuote.id)).first()

    def list_quotes_for_user(self, user: User) -> List[SalesQuote]:
        return self.db.query(SalesQuote).join(RFQ, SalesQuote.rfq_id == RFQ.id).filter(
            RFQ.user_id.in_(self.company_user_ids(user))
        ).order_by(desc(SalesQuote.id)).all()

    def list_all_quotes(self) -> List[SalesQuote]:
        return self.db.query(SalesQuote).order_by(desc(SalesQuote.id)).all()

    def respond_to_quote(
        self,
        quote: SalesQuote,
        accept: bool,
        response: Optional[str] = None,
        purchase_order_url: Optional[str] = None,
        purchase_order_number: Optional[str] = None,
    ) -> SalesQuote:
        """Set the customer's decision on both the quote and its RFQ."""
        status = QuoteStatus.ACCEPTED.value if accept else QuoteStatus.DECLINED.value
        quote.status = status
        quote.customer_response = response
        quote.responded_at = utcnow()
        if purchase_order_url:
            quote.purchase_order_url = purchase_order_url
        if purchase_order_number:
            quote.purchase_order_number = purchase_order_number

        rfq = self.get_rfq(quote.rfq_id)
        if rfq:
            self.update_rfq_status(rfq, status)
        self.db.flush()
        return quote

    def attach_purchase_order(self, quote: SalesQuote, url: str, po_number: Optional[str]) -> SalesQuote:
        quote.purchase_order_url = url
        if po_number:
            quote.purchase_order_number = po_number
        order = self.get_order_for_rfq(quote.rfq_id)
        if order and po_number:
            order.customer_purchase_order_number = po_number
        self.db.flush()
        return quote

    # ============= SALES ORDERS =============

    def get_order(self, order_id: int) -> Optional[SalesOrder]:
        return self.db.query(SalesOrder).filter(SalesOrder.id == order_id).first()

    def get_order_for_rfq(self, rfq_id: int) -> Optional[SalesOrder]:
        return self.db.query(SalesOrder).filter(SalesOrder.rfq_id == rfq_id).first()

    def list_orders_for_user(self, user: User) -> List[SalesOrder]:
        return self.db.query(SalesOrder).filter(
            SalesOrder.user_id.in_(self.company_user_ids(user))
        ).order_by(desc(SalesOrder.order_date), desc(SalesOrder.id)).all()

    def list_all_orders(self, archived: bool = False) -> List[SalesOrder]:
        return self.db.query(SalesOrder).filter(
            SalesOrder.is_archived.is_(archived)
        ).order_by(desc(SalesOrder.order_date), desc(SalesOrder.id)).all()

    def can_access_order(self, user: User, order: SalesOrder) -> bool:
        return order.user_id in self.company_user_ids(user)

    def create_order_from_rfq(
        self,
        rfq: RFQ,
        estimated_completion: Optional[datetime] = None,
        notes: Optional[str] = None,
        order_status: str = OrderStatus.PENDING.value,
        customer_purchase_order_number: Optional[str] = None,
    ) -> SalesOrder:
        """Create the single order for an RFQ from its latest quote, snapshotting the RFQ."""
        if self.get_order_for_rfq(rfq.id):
            raise ValueError("Order already exists for this RFQ")
        quote = self.get_quote_for_rfq(rfq.id)
        if quote is None:
            raise ValueError("Quote not found. Please create a quote first.")

        if estimated_completion is None:
            estimated_completion = utcnow() + timedelta(days=settings.ORDER_DEFAULT_DUE_DAYS)

        def apply(number: str) -> SalesOrder:
            order = SalesOrder(
                user_id=rfq.user_id,
                rfq_id=rfq.id,
                quote_id=quote.id,
                order_number=number,
                project_name=rfq.project_name,
                material=rfq.material,
                material_grade=rfq.material_grade,
                finishing=rfq.finishing,
                tolerance=rfq.tolerance,
                quantity=rfq.quantity,
                quantity_shipped=0,
                quantity_remaining=rfq.quantity,
                notes=notes if notes is not None else rfq.notes,
                amount=quote.amount,
                currency=quote.currency or "USD",
                order_status=order_status,
                payment_status=PaymentStatus.UNPAID.value,
                is_archived=False,
                estimated_completion=estimated_completion,
                customer_purchase_order_number=customer_purchase_order_number or quote.purchase_order_number,
            )
            self.db.add(order)
            return order

        return self._allocate("order", self.next_order_number, apply)

    def update_order_status(self, order: SalesOrder, status: str) -> SalesOrder:
        order.order_status = OrderStatus(status).value
        self.db.flush()
        return order

    def update_order_tracking(
        self,
        order: SalesOrder,
        tracking_number: Optional[str],
        shipping_carrier: Optional[str],
    ) -> SalesOrder:
        if tracking_number is not None:
            order.tracking_number = tracking_number
        if shipping_carrier is not None:
            order.shipping_carrier = shipping_carrier
        self.db.flush()
        return order

    def update_payment_status(self, order: SalesOrder, payment_status: str) -> SalesOrder:
        """Paid orders are archived and their invoices settled."""
        order.payment_status = PaymentStatus(payment_status).value
        if order.payment_status == PaymentStatus.PAID.value:
            order.is_archived = True
            order.archived_at = utcnow()
            for invoice in order.invoices:
                invoice.is_paid = True
                invoice.amount_paid = invoice.amount_due
        self.db.flush()
        return order

    def reopen_order(self, order: SalesOrder) -> SalesOrder:
        order.is_archived = False
        order.archived_at = None
        order.payment_status = PaymentStatus.UNPAID.value
        self.db.flush()
        return order

    def create_invoice(self, order: SalesOrder, invoice_url: str) -> SalesInvoice:
        order.invoice_url = invoice_url

        def apply(number: str) -> SalesInvoice:
            invoice = SalesInvoice(
                order_id=order.id,
                invoice_number=number,
                invoice_url=invoice_url,
                amount_due=order.amount,
                amount_paid=0.0,
                due_date=utcnow() + timedelta(days=settings.ORDER_DEFAULT_DUE_DAYS),
                is_paid=False,
            )
            self.db.add(invoice)
            return invoice

        return self._allocate("invoice", self.next_invoice_number, apply)

    def can_reorder(self, order: SalesOrder) -> bool:
        return bool(order.is_archived) or order.order_status in REORDERABLE_STATUSES

    def create_reorder_rfq(self, order: SalesOrder, user: User) -> RFQ:
        """Fork a new submitted RFQ from a finished order; file rows are copied by the caller."""
        if not self.can_reorder(order):
            raise ValueError("Can only reorder orders that are shipped, packed, delivered, or archived")

        source = self.get_rfq(order.rfq_id) if order.rfq_id else None
        notes = (
            f"Reorder of Order #{order.order_number}. Original Order ID: {order.id}. "
            f"Original notes: {(source.notes if source else None) or 'None'}"
        )
        return self.create_rfq(
            user_id=user.id,
            project_name=f"REORDER: {order.project_name}",
            material=order.material,
            material_grade=order.material_grade,
            finishing=order.finishing,
            tolerance=order.tolerance,
            quantity=order.quantity,
            notes=notes,
            special_instructions=source.special_instructions if source else None,
            manufacturing_process=source.manufacturing_process if source else None,
            manufacturing_subprocess=source.manufacturing_subprocess if source else None,
            international_manufacturing_ok=(
                source.international_manufacturing_ok if source else False
            ),
        )

    def set_quality_check(self, order: SalesOrder, status: str, notes: Optional[str] = None) -> SalesOrder:
        order.quality_check_status = QualityCheckStatus(status).value
        if notes is not None:
            order.quality_check_notes = notes
        if order.quality_check_status == QualityCheckStatus.APPROVED.value:
            order.customer_approved_at = utcnow()
        self.db.flush()
        return order

    # ============= SHIPMENTS =============

    def record_shipment(
        self,
        order: SalesOrder,
        quantity: int,
        tracking_number: Optional[str] = None,
        shipping_carrier: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Shipment:
        """
        Record a partial shipment.

        Nothing is mutated when the quantity is invalid or exceeds what remains.
        The order moves to shipped once the remaining quantity reaches zero.
        """
        if quantity is None or quantity <= 0:
            raise ValueError("Valid quantity is required")
        remaining = order.quantity_remaining
        if remaining is None:
            remaining = order.quantity - (order.quantity_shipped or 0)
        if quantity > remaining:
            raise ValueError("Cannot ship more than remaining quantity")

        shipment = Shipment(
            order_id=order.id,
            quantity_shipped=quantity,
            tracking_number=tracking_number,
            shipping_carrier=shipping_carrier,
            notes=notes,
            shipment_date=utcnow(),
            tracking_status=TrackingStatus.MATERIAL_PROCUREMENT.value,
            status=ShipmentStatus.SHIPPED.value,
        )
        self.db.add(shipment)

        order.quantity_shipped = (order.quantity_shipped or 0) + quantity
        order.quantity_remaining = remaining - quantity
        if tracking_number and not order.tracking_number:
            order.tracking_number = tracking_number
        if shipping_carrier and not order.shipping_carrier:
            order.shipping_carrier = shipping_carrier
        if order.quantity_remaining == 0:
            order.order_status = OrderStatus.SHIPPED.value

        self.db.flush()
        return shipment

    def get_shipment(self, shipment_id: int) -> Optional[Shipment]:
        return self.db.query(Shipment).filter(Shipment.id == shipment_id).first()

    def list_shipments(self, order_id: int) -> List[Shipment]:
        return self.db.query(Shipment).filter(
            Shipment.order_id == order_id
        ).order_by(Shipment.shipment_date, Shipment.id).all()

    def update_shipment_status(
        self,
        shipment: Shipment,
        status: str,
        delivery_date: Optional[datetime] = None,
    ) -> Shipment:
        shipment.status = ShipmentStatus(status).value
        if shipment.status == ShipmentStatus.DELIVERED.value and delivery_date:
            shipment.delivery_date = delivery_date
            shipment.tracking_status = TrackingStatus.DELIVERED.value
        self.db.flush()
        return shipment

    def update_shipment_tracking_status(self, shipment: Shipment, tracking_status: str) -> Shipment:
        shipment.tracking_status = TrackingStatus(tracking_status).value
        self.db.flush()
        return shipment

    # ============= SUPPLIER ASSIGNMENTS & QUOTES =============

    def get_suppliers(self) -> List[User]:
        return self.db.query(User).filter(User.role == UserRole.SUPPLIER.value).order_by(User.name).all()

    def assign_suppliers(self, rfq: RFQ, supplier_ids: Iterable[int]) -> List[RfqAssignment]:
        """Invite suppliers to quote; already-invited suppliers are skipped."""
        supplier_ids = list(dict.fromkeys(supplier_ids))
        if not supplier_ids:
            raise ValueError("At least one supplier is required")

        suppliers = self.db.query(User).filter(
            User.id.in_(supplier_ids),
            User.role == UserRole.SUPPLIER.value,
        ).all()
        if len(suppliers) != len(supplier_ids):
            raise ValueError("One or more suppliers were not found")

        self.ensure_sqte_reference(rfq)
        existing = {
            a.supplier_id for a in
            self.db.query(RfqAssignment).filter(RfqAssignment.rfq_id == rfq.id).all()
        }
        created = []
        for supplier in suppliers:
            if supplier.id in existing:
                continue
            assignment = RfqAssignment(
                rfq_id=rfq.id,
                supplier_id=supplier.id,
                status=AssignmentStatus.ASSIGNED.value,
            )
            self.db.add(assignment)
            created.append(assignment)

        self.update_rfq_status(rfq, RFQStatus.SENT_TO_SUPPLIERS.value)
        self.db.flush()
        return created

    def get_assignment(self, rfq_id: int, supplier_id: int) -> Optional[RfqAssignment]:
        return self.db.query(RfqAssignment).filter(
            RfqAssignment.rfq_id == rfq_id,
            RfqAssignment.supplier_id == supplier_id,
        ).first()

    def is_supplier_assigned(self, user: User, rfq_id: int) -> bool:
        """True when the supplier, or a colleague at the same company, was invited."""
        return self.db.query(RfqAssignment).filter(
            RfqAssignment.rfq_id == rfq_id,
            RfqAssignment.supplier_id.in_(self.company_user_ids(user)),
        ).first() is not None

    def list_assignments_for_supplier(self, user: User) -> List[RfqAssignment]:
        return self.db.query(RfqAssignment).filter(
            RfqAssignment.supplier_id.in_(self.company_user_ids(user))
        ).order_by(desc(RfqAssignment.assigned_at), desc(RfqAssignment.id)).all()

    def get_supplier_quote(self, quote_id: int) -> Optional[SupplierQuote]:
        return self.db.query(SupplierQuote).filter(SupplierQuote.id == quote_id).first()

    def list_supplier_quotes_for_rfq(self, rfq_id: int) -> List[SupplierQuote]:
        return self.db.query(SupplierQuote).filter(
            SupplierQuote.rfq_id == rfq_id
        ).order_by(SupplierQuote.price, SupplierQuote.id).all()

    def list_supplier_quotes_for_supplier(self, user: User) -> List[SupplierQuote]:
        return self.db.query(SupplierQuote).filter(
            SupplierQuote.supplier_id.in_(self.company_user_ids(user))
        ).order_by(desc(SupplierQuote.submitted_at), desc(SupplierQuote.id)).all()

    def check_can_bid(self, rfq: RFQ, supplier: User) -> None:
        if not self.is_supplier_assigned(supplier, rfq.id):
            raise PermissionError("You are not assigned to this RFQ")
        duplicate = self.db.query(SupplierQuote.id).filter(
            SupplierQuote.rfq_id == rfq.id,
            SupplierQuote.supplier_id == supplier.id,
        ).first()
        if duplicate:
            raise ValueError("You have already submitted a quote for this RFQ")

    def create_supplier_quote(
        self,
        rfq: RFQ,
        supplier: User,
        price: float,
        lead_time: int,
        **fields,
    ) -> SupplierQuote:
        """
        Record a supplier bid.

        Totals are derived from the price: the discount is taken first, tax is
        applied to the discounted subtotal.
        """
        self.check_can_bid(rfq, supplier)

        fields = {k: v for k, v in fields.items() if v is not None}
        fields.setdefault("currency", "USD")
        fields.setdefault("payment_terms", "Net 30")

        discount_pct = fields.get("discount_percentage") or 0.0
        tax_pct = fields.get("tax_percentage") or 0.0
        discount_amount = round(price * discount_pct / 100, 2)
        total_before_tax = round(price - discount_amount, 2)
        tax_amount = round(total_before_tax * tax_pct / 100, 2)

        self.ensure_sqte_reference(rfq)
        quote = SupplierQuote(
            rfq_id=rfq.id,
            supplier_id=supplier.id,
            sqte_number=rfq.sqte_number,
            price=price,
            lead_time=lead_time,
            status=SupplierQuoteStatus.PENDING.value,
            discount_amount=discount_amount if discount_pct else None,
            tax_amount=tax_amount if tax_pct else None,
            total_before_tax=total_before_tax,
            total_after_tax=round(total_before_tax + tax_amount, 2),
            **fields,
        )
        self.db.add(quote)

        assignment = self.db.query(RfqAssignment).filter(
            RfqAssignment.rfq_id == rfq.id,
            RfqAssignment.supplier_id.in_(self.company_user_ids(supplier)),
        ).first()
        if assignment:
            assignment.status = AssignmentStatus.QUOTED.value
        self.db.flush()
        return quote

    def update_supplier_quote_status(
        self,
        quote: SupplierQuote,
        status: str,
        feedback: Optional[str] = None,
    ) -> SupplierQuote:
        quote.status = SupplierQuoteStatus(status).value
        if feedback is not None:
            quote.admin_feedback = feedback
        quote.responded_at = utcnow()
        self.db.flush()
        return quote

    def finalize_rfq(self, rfq: RFQ, winner: SupplierQuote, markup: float):
        """
        Turn the winning supplier bid into the customer quote.

        Returns (sales_quote, losing_quotes).
        """
        if winner.rfq_id != rfq.id:
            raise ValueError("Supplier quote does not belong to this RFQ")

        now = utcnow()
        customer_price = round(winner.price * (1 + markup / 100), 2)
        sales_quote = self.create_quote(
            rfq,
            amount=customer_price,
            valid_until=now + timedelta(days=settings.QUOTE_VALIDITY_DAYS),
            currency=winner.currency or "USD",
            estimated_delivery_date=now + timedelta(days=(winner.lead_time or 0) + 7),
            notes=(
                f"Based on supplier quote ({markup}% markup). "
                f"Supplier lead time: {winner.lead_time} days."
            ),
        )
        self.update_supplier_quote_status(winner, SupplierQuoteStatus.ACCEPTED.value)

        losers = [
            q for q in self.list_supplier_quotes_for_rfq(rfq.id)
            if q.id != winner.id and q.status != SupplierQuoteStatus.NOT_SELECTED.value
        ]
        for quote in losers:
            self.update_supplier_quote_status(quote, SupplierQuoteStatus.NOT_SELECTED.value)
        return sales_quote, losers

    # ============= PURCHASE ORDERS =============

    def create_purchase_order(
        self,
        supplier_id: int,
        total_amount: float,
        supplier_quote: Optional[SupplierQuote] = None,
        rfq_id: Optional[int] = None,
        delivery_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        po_file_url: Optional[str] = None,
    ) -> PurchaseOrder:
        if supplier_quote is not None:
            supplier_id = supplier_quote.supplier_id
            rfq_id = supplier_quote.rfq_id
            total_amount = supplier_quote.price
            if delivery_date is None:
                delivery_date = utcnow() + timedelta(days=supplier_quote.lead_time or 0)

        def apply(number: str) -> PurchaseOrder:
            po = PurchaseOrder(
                order_number=number,
                supplier_quote_id=supplier_quote.id if supplier_quote else None,
                supplier_id=supplier_id,
                rfq_id=rfq_id,
                status=PurchaseOrderStatus.PENDING.value,
                total_amount=total_amount,
                delivery_date=delivery_date,
                notes=notes,
                po_file_url=po_file_url,
            )
            self.db.add(po)
            return po

        return self._allocate("purchase order", self.next_purchase_order_number, apply)

    def get_purchase_order(self, po_id: int) -> Optional[PurchaseOrder]:
        return self.db.query(PurchaseOrder).filter(PurchaseOrder.id == po_id).first()

    def list_purchase_orders(self) -> List[PurchaseOrder]:
        return self.db.query(PurchaseOrder).order_by(desc(PurchaseOrder.created_at), desc(PurchaseOrder.id)).all()

    def list_purchase_orders_for_supplier(self, user: User) -> List[PurchaseOrder]:
        return self.db.query(PurchaseOrder).filter(
            PurchaseOrder.supplier_id.in_(self.company_user_ids(user))
        ).order_by(desc(PurchaseOrder.created_at), desc(PurchaseOrder.id)).all()

    def can_supplier_act_on_po(self, user: User, po: PurchaseOrder) -> bool:
        return po.supplier_id in self.company_user_ids(user)

    def respond_to_purchase_order(self, po: PurchaseOrder, accept: bool) -> PurchaseOrder:
        if po.status != PurchaseOrderStatus.PENDING.value:
            raise ValueError("Purchase order is not in pending status")
        if accept:
            po.status = PurchaseOrderStatus.ACCEPTED.value
            po.accepted_at = utcnow()
        else:
            po.status = PurchaseOrderStatus.DECLINED.value
        self.db.flush()
        return po

    def advance_purchase_order(self, po: PurchaseOrder, status: str) -> PurchaseOrder:
        """Supplier-side progress: forward through the pipeline once accepted."""
        if status not in SUPPLIER_PO_PIPELINE:
            raise ValueError(f"Status must be one of: {', '.join(SUPPLIER_PO_PIPELINE)}")
        if po.status not in SUPPLIER_PO_PIPELINE:
            raise ValueError("Purchase order must be accepted before it can progress")
        if SUPPLIER_PO_PIPELINE.index(status) <= SUPPLIER_PO_PIPELINE.index(po.status):
            raise ValueError(f"Purchase order is already {po.status}")
        po.status = status
        self.db.flush()
        return po

    def update_purchase_order_status(self, po: PurchaseOrder, status: str) -> PurchaseOrder:
        po.status = PurchaseOrderStatus(status).value
        if po.status == PurchaseOrderStatus.ACCEPTED.value and not po.accepted_at:
            po.accepted_at = utcnow()
        self.db.flush()
        return po

    def archive_purchase_order(self, po: PurchaseOrder) -> PurchaseOrder:
        if po.status != PurchaseOrderStatus.DELIVERED.value:
            raise ValueError("Only delivered purchase orders can be archived")
        po.status = PurchaseOrderStatus.ARCHIVED.value
        po.archived_at = utcnow()
        self.db.flush()
        return po

    def complete_purchase_order(self, po: PurchaseOrder) -> PurchaseOrder:
        po.status = PurchaseOrderStatus.COMPLETED.value
        po.payment_completed_at = utcnow()
        self.db.flush()
        return po

    def attach_supplier_invoice(self, po: PurchaseOrder, url: str) -> PurchaseOrder:
        if po.status not in INVOICEABLE_PO_STATUSES:
            raise ValueError("An invoice can only be uploaded once the purchase order is delivered")
        po.supplier_invoice_url = url
        po.invoice_uploaded_at = utcnow()
        self.db.flush()
        return po

    # ============= NOTIFICATIONS =============

    def create_notification(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        related_id: Optional[int] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            related_id=related_id,
            is_read=False,
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def notify_admins(self, type: str, title: str, message: str, related_id: Optional[int] = None) -> List[Notification]:
        return [
            self.create_notification(admin.id, type, title, message, related_id)
            for admin in self.get_admin_users()
        ]

    def list_notifications(self, user_id: int, type: Optional[str] = None) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if type:
            query = query.filter(Notification.type == type)
        return query.order_by(desc(Notification.created_at), desc(Notification.id)).all()

    def get_notification(self, user_id: int, notification_id: int) -> Optional[Notification]:
        return self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).first()

    def mark_notification_read(self, notification: Notification) -> Notification:
        notification.is_read = True
        self.db.flush()
        return notification

    def mark_all_notifications_read(self, user_id: int, type: Optional[str] = None) -> int:
        query = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        if type:
            query = query.filter(Notification.type == type)
        count = query.update({Notification.is_read: True}, synchronize_session=False)
        self.db.flush()
        return count

    def unread_notification_count(self, user_id: int) -> int:
        return self.db.query(func.count(Notification.id)).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        ).scalar() or 0

    # ============= MESSAGES =============

    @staticmethod
    def generate_thread_id(user_a: int, user_b: int, now: Optional[datetime] = None) -> str:
        low, high = sorted((user_a, user_b))
        epoch_ms = int((now or utcnow()).timestamp() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"{low}-{high}-{epoch_ms}-{suffix}"

    def find_thread_id(self, user_a: int, user_b: int, category: str) -> Optional[str]:
        """Most recent thread between the two participants in the category."""
        row = self.db.query(Message.thread_id).filter(
            or_(
                and_(Message.sender_id == user_a, Message.receiver_id == user_b),
                and_(Message.sender_id == user_b, Message.receiver_id == user_a),
            ),
            Message.category == category,
        ).order_by(desc(Message.created_at), desc(Message.id)).first()
        return row[0] if row else None

    def is_thread_participant(self, user_id: int, thread_id: str) -> bool:
        return self.db.query(Message.id).filter(
            Message.thread_id == thread_id,
            or_(Message.sender_id == user_id, Message.receiver_id == user_id),
        ).first() is not None

    def thread_participant_ids(self, thread_id: str) -> set:
        rows = self.db.query(Message.sender_id, Message.receiver_id).filter(
            Message.thread_id == thread_id
        ).all()
        return {user_id for row in rows for user_id in row}

    def send_message(
        self,
        sender: User,
        receiver_id: int,
        content: str,
        category: str = "general",
        subject: Optional[str] = None,
        thread_id: Optional[str] = None,
        related_type: Optional[str] = None,
        related_id: Optional[int] = None,
    ) -> Message:
        """
        Send a message, reusing the latest thread for the same participants and
        category. An explicit thread id is honored only when both sender and
        receiver already take part in it.
        """
        category = category or "general"
        if thread_id:
            participants = self.thread_participant_ids(thread_id)
            if sender.id not in participants:
                raise PermissionError("Not a participant in this thread")
            if receiver_id not in participants:
                raise PermissionError("Receiver is not a participant in this thread")
        if not thread_id:
            thread_id = self.find_thread_id(sender.id, receiver_id, category)
        if not thread_id:
            thread_id = self.generate_thread_id(sender.id, receiver_id)

        message = Message(
            sender_id=sender.id,
            receiver_id=receiver_id,
            thread_id=thread_id,
            category=category,
            subject=subject,
            content=content,
            related_type=related_type,
            related_id=related_id,
            is_read=False,
            email_notification_sent=False,
            created_at=utcnow(),
        )
        self.db.add(message)
        self.db.flush()
        return message

    def get_message(self, message_id: int) -> Optional[Message]:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def list_threads(self, user: User) -> List[Dict]:
        """One summary per thread the user takes part in, newest activity first."""
        messages = self.db.query(Message).filter(
            or_(Message.sender_id == user.id, Message.receiver_id == user.id)
        ).order_by(desc(Message.created_at), desc(Message.id)).all()

        threads: Dict[str, Dict] = {}
        for message in messages:
            summary = threads.get(message.thread_id)
            if summary is None:
                other_id = message.receiver_id if message.sender_id == user.id else message.sender_id
                other = self.get_user(other_id)
                summary = {
                    "thread_id": message.thread_id,
                    "category": message.category,
                    "subject": message.subject,
                    "other_user_id": other_id,
                    "other_user_name": other.name if other else None,
                    "other_user_email": other.email if other else None,
                    "last_message": message.content,
                    "last_message_at": message.created_at,
                    "unread_count": 0,
                    "message_count": 0,
                }
                threads[message.thread_id] = summary
            summary["message_count"] += 1
            if message.receiver_id == user.id and not message.is_read:
                summary["unread_count"] += 1
            if not summary["subject"] and message.subject:
                summary["subject"] = message.subject
        return list(threads.values())

    def get_thread_messages(self, thread_id: str) -> List[Message]:
        return self.db.query(Message).filter(
            Message.thread_id == thread_id
        ).order_by(Message.created_at, Message.id).all()

    def mark_thread_read(self, user_id: int, thread_id: str) -> int:
        count = self.db.query(Message).filter(
            Message.thread_id == thread_id,
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
        ).update({Message.is_read: True}, synchronize_session=False)
        self.db.flush()
        return count

    def unread_message_count(self, user_id: int) -> int:
        return self.db.query(func.count(Message.id)).filter(
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
        ).scalar() or 0

    def add_attachment(
        self,
        message: Message,
        file_name: str,
        original_name: str,
        file_path: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> MessageAttachment:
        attachment = MessageAttachment(
            message_id=message.id,
            file_name=file_name,
            original_name=original_name,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
        )
        self.db.add(attachment)
        self.db.flush()
        return attachment

    def get_attachment(self, attachment_id: int) -> Optional[MessageAttachment]:
        return self.db.query(MessageAttachment).filter(MessageAttachment.id == attachment_id).first()

    def find_messages_needing_reminder(self, cutoff: datetime) -> List[Message]:
        """Unread, not yet emailed, older than cutoff, addressed to non-admin users."""
        return self.db.query(Message).join(User, Message.receiver_id == User.id).filter(
            Message.is_read.is_(False),
            Message.email_notification_sent.is_(False),
            Message.created_at < cutoff,
            User.role != UserRole.ADMIN.value,
        ).order_by(Message.created_at, Message.id).all()

    def mark_messages_notified(self, messages: Iterable[Message], when: Optional[datetime] = None) -> None:
        when = when or utcnow()
        for message in messages:
            message.email_notification_sent = True
            message.email_notification_sent_at = when
        self.db.flush()

    # ============= DASHBOARDS & REPORTS =============

    def customer_dashboard_stats(self, user: User) -> Dict:
        user_ids = self.company_user_ids(user)
        ordered_rfq_ids = select(SalesOrder.rfq_id).where(SalesOrder.rfq_id.isnot(None))

        active_rfqs = self.db.query(func.count(RFQ.id)).filter(
            RFQ.user_id.in_(user_ids),
            RFQ.status.in_([RFQStatus.SUBMITTED.value, RFQStatus.QUOTED.value]),
            RFQ.id.notin_(ordered_rfq_ids),
        ).scalar() or 0

        active_orders = self.db.query(func.count(SalesOrder.id)).filter(
            SalesOrder.user_id.in_(user_ids),
            SalesOrder.order_status != OrderStatus.DELIVERED.value,
            SalesOrder.is_archived.is_(False),
        ).scalar() or 0

        pending_quotes = self.db.query(func.count(SalesQuote.id)).join(
            RFQ, SalesQuote.rfq_id == RFQ.id
        ).filter(
            RFQ.user_id.in_(user_ids),
            SalesQuote.status == QuoteStatus.PENDING.value,
        ).scalar() or 0

        total_spent = self.db.query(func.coalesce(func.sum(SalesOrder.amount), 0.0)).filter(
            SalesOrder.user_id.in_(user_ids),
            SalesOrder.payment_status == PaymentStatus.PAID.value,
        ).scalar() or 0.0

        return {
            "active_rfqs": active_rfqs,
            "active_orders": active_orders,
            "pending_quotes": pending_quotes,
            "total_spent": float(total_spent),
        }

    def supplier_dashboard_stats(self, user: User) -> Dict:
        user_ids = self.company_user_ids(user)
        pending_rfqs = self.db.query(func.count(RfqAssignment.id)).filter(
            RfqAssignment.supplier_id.in_(user_ids),
            RfqAssignment.status == AssignmentStatus.ASSIGNED.value,
        ).scalar() or 0

        def quote_count(status: str) -> int:
            return self.db.query(func.count(SupplierQuote.id)).filter(
                SupplierQuote.supplier_id.in_(user_ids),
                SupplierQuote.status == status,
            ).scalar() or 0

        return {
            "pending_rfqs": pending_rfqs,
            "submitted_quotes": quote_count(SupplierQuoteStatus.PENDING.value),
            "accepted_quotes": quote_count(SupplierQuoteStatus.ACCEPTED.value),
            "unread_notifications": self.unread_notification_count(user.id),
        }

    def admin_reports(self) -> Dict:
        total_customers = self.db.query(func.count(User.id)).filter(
            User.role == UserRole.CUSTOMER.value,
            User.is_admin.is_(False),
        ).scalar() or 0
        total_rfqs = self.db.query(func.count(RFQ.id)).scalar() or 0
        total_orders = self.db.query(func.count(SalesOrder.id)).scalar() or 0
        total_revenue = self.db.query(
            func.coalesce(func.sum(SalesOrder.amount), 0.0)
        ).scalar() or 0.0

        spend = func.sum(SalesOrder.amount).label("total_spent")
        top_rows = self.db.query(
            User.id, User.name, User.email, spend, func.count(SalesOrder.id).label("order_count")
        ).join(SalesOrder, SalesOrder.user_id == User.id).group_by(
            User.id, User.name, User.email
        ).order_by(desc("total_spent")).limit(5).all()

        return {
            "total_customers": total_customers,
            "total_rfqs": total_rfqs,
            "total_orders": total_orders,
            "total_revenue": float(total_revenue),
            "top_customers": [
                {
                    "user_id": row.id,
                    "name": row.name,
                    "email": row.email,
                    "total_spent": float(row.total_spent or 0),
                    "order_count": row.order_count,
                }
                for row in top_rows
            ],
        }

    # ============= AUDIT =============

    def audit(
        self,
        action: str,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """Persist an audit row and mirror it to the audit logger."""
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=ip_address,
        )
        self.db.add(entry)
        audit_logger.log(
            action,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=ip_address,
        )
        return entry
