"""
SQLAlchemy ORM models for the S-Hub manufacturing portal.
Customers and suppliers share data through their company; admins see everything.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============
# Using create_type=False to prevent recreation attempts on every boot.
# Enums are created via Alembic migration.

class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class CompanyType(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class RFQStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    QUOTED = "quoted"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SENT_TO_SUPPLIERS = "sent_to_suppliers"


class QuoteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class OrderStatus(str, enum.Enum):
    WAITING_FOR_PO = "waiting_for_po"
    PENDING = "pending"
    MATERIAL_PROCUREMENT = "material_procurement"
    MANUFACTURING = "manufacturing"
    FINISHING = "finishing"
    QUALITY_CHECK = "quality_check"
    PACKING = "packing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class QualityCheckStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


class ShipmentStatus(str, enum.Enum):
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class TrackingStatus(str, enum.Enum):
    MATERIAL_PROCUREMENT = "material_procurement"
    MANUFACTURING = "manufacturing"
    FINISHING = "finishing"
    QUALITY_CHECK = "quality_check"
    PACKING = "packing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class FileType(str, enum.Enum):
    STEP = "step"
    PDF = "pdf"
    EXCEL = "excel"
    IMAGE = "image"
    QUOTE = "quote"


class LinkedToType(str, enum.Enum):
    """Which entity a stored file belongs to; linked_to_id is that entity's id."""
    RFQ = "rfq"
    ORDER = "order"
    QUALITY_CHECK = "quality_check"
    SUPPLIER_QUOTE = "supplier_quote"


class SupplierQuoteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    NOT_SELECTED = "not_selected"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    QUOTED = "quoted"
    EXPIRED = "expired"


class NotificationType(str, enum.Enum):
    RFQ_ASSIGNMENT = "rfq_assignment"
    STATUS_UPDATE = "status_update"
    MESSAGE = "message"
    ORDER_CONFIRMATION = "order_confirmation"


class PurchaseOrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


# Using values_callable semantics: store enum values (lowercase), not names
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


UserRoleType = Enum(*enum_values(UserRole), name='userrole', create_type=False)
CompanyTypeType = Enum(*enum_values(CompanyType), name='companytype', create_type=False)
RFQStatusType = Enum(*enum_values(RFQStatus), name='rfqstatus', create_type=False)
QuoteStatusType = Enum(*enum_values(QuoteStatus), name='quotestatus', create_type=False)
OrderStatusType = Enum(*enum_values(OrderStatus), name='orderstatus', create_type=False)
PaymentStatusType = Enum(*enum_values(PaymentStatus), name='paymentstatus', create_type=False)
QualityCheckStatusType = Enum(
    *enum_values(QualityCheckStatus),
    name='qualitycheckstatus',
    create_type=False
)
ShipmentStatusType = Enum(*enum_values(ShipmentStatus), name='shipmentstatus', create_type=False)
TrackingStatusType = Enum(*enum_values(TrackingStatus), name='trackingstatus', create_type=False)
FileTypeType = Enum(*enum_values(FileType), name='filetype', create_type=False)
LinkedToTypeType = Enum(*enum_values(LinkedToType), name='linkedtotype', create_type=False)
SupplierQuoteStatusType = Enum(
    *enum_values(SupplierQuoteStatus),
    name='supplierquotestatus',
    create_type=False
)
AssignmentStatusType = Enum(
    *enum_values(AssignmentStatus),
    name='assignmentstatus',
    create_type=False
)
NotificationTypeType = Enum(
    *enum_values(NotificationType),
    name='notificationtype',
    create_type=False
)
PurchaseOrderStatusType = Enum(
    *enum_values(PurchaseOrderStatus),
    name='purchaseorderstatus',
    create_type=False
)


# ============= COMPANIES & USERS =============

class Company(Base):
    """Customer (CU####) or supplier (V####) organization."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    company_number = Column(String(20), unique=True, nullable=True, index=True)
    company_type = Column(CompanyTypeType, nullable=False, default=CompanyType.CUSTOMER.value)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    phone = Column(String(50))
    address = Column(Text)
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    postal_code = Column(String(20))
    website = Column(String(255))
    industry = Column(String(100))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    users = relationship("User", back_populates="company")


class User(Base):
    """Portal account; (email, role) is unique so one email can be customer and supplier."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", "role", name="uq_users_email_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    name = Column(String(255))
    title = Column(String(255))
    phone = Column(String(50))
    user_number = Column(String(20), unique=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    company_name_input = Column(String(255))
    role = Column(UserRoleType, nullable=False, default=UserRole.CUSTOMER.value)
    is_admin = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    is_verified = Column(Boolean, default=False)
    verification_code = Column(String(10))
    verification_code_expiry = Column(DateTime(timezone=True))
    reset_code = Column(String(10))
    reset_code_expiry = Column(DateTime(timezone=True))
    is_admin_created = Column(Boolean, default=False)
    must_reset_password = Column(Boolean, default=False)

    # Supplier capability profile
    website = Column(String(255))
    address = Column(Text)
    capabilities = Column(JSON, default=list)  # e.g. ["cnc_machining", "sheet_metal"]
    certifications = Column(JSON, default=list)  # e.g. ["ISO 9001"]
    finishing_capabilities = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login = Column(DateTime(timezone=True))

    # Relationships
    company = relationship("Company", back_populates="users")
    rfqs = relationship("RFQ", back_populates="user")
    audit_logs = relationship("AuditLog", back_populates="user")


class PendingRegistration(Base):
    """Signup awaiting email verification; becomes a User once the code is confirmed."""
    __tablename__ = "pending_registrations"
    __table_args__ = (
        UniqueConstraint("email", "role", name="uq_pending_email_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(UserRoleType, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    company_name = Column(String(255))
    verification_code = Column(String(10), nullable=False)
    verification_code_expiry = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ============= AUDIT =============

class AuditLog(Base):
    """Audit trail for significant mutations."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))

    user = relationship("User", back_populates="audit_logs")


# ============= RFQ / QUOTE / ORDER =============

class RFQ(Base):
    """Customer request for quote."""
    __tablename__ = "rfqs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    project_name = Column(String(255), nullable=False)
    material = Column(String(255), nullable=False)
    material_grade = Column(String(255))
    finishing = Column(String(255))
    tolerance = Column(String(100))
    quantity = Column(Integer, nullable=False)
    notes = Column(Text)
    special_instructions = Column(Text)
    manufacturing_process = Column(String(255))
    manufacturing_subprocess = Column(String(255))
    international_manufacturing_ok = Column(Boolean, default=False)
    status = Column(RFQStatusType, default=RFQStatus.SUBMITTED.value, nullable=False)
    sqte_number = Column(String(20), index=True)  # SQTE-NNN reference, set when routed to suppliers
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="rfqs")
    quotes = relationship("SalesQuote", back_populates="rfq")
    assignments = relationship("RfqAssignment", back_populates="rfq", cascade="all, delete-orphan")
    supplier_quotes = relationship("SupplierQuote", back_populates="rfq")


class StoredFile(Base):
    """Uploaded artifact linked to an RFQ, order, quality check or supplier quote."""
    __tablename__ = "files"
    __table_args__ = (
        Index("ix_files_link", "linked_to_type", "linked_to_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    file_name = Column(String(500), nullable=False)
    file_url = Column(Text, nullable=False)  # storage path on disk
    file_size = Column(Integer)
    file_type = Column(FileTypeType, nullable=False)
    linked_to_type = Column(LinkedToTypeType, nullable=False)
    linked_to_id = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())


class SalesQuote(Base):
    """Admin-priced quote returned to the customer."""
    __tablename__ = "sales_quotes"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    quote_number = Column(String(20), unique=True, nullable=False)  # SQTE-YYNNN
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="USD")
    valid_until = Column(DateTime(timezone=True), nullable=False)
    estimated_delivery_date = Column(DateTime(timezone=True))
    quote_file_url = Column(Text)
    notes = Column(Text)
    status = Column(QuoteStatusType, default=QuoteStatus.PENDING.value, nullable=False)
    customer_response = Column(Text)
    purchase_order_url = Column(Text)
    purchase_order_number = Column(String(100))
    responded_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rfq = relationship("RFQ", back_populates="quotes")


class SalesOrder(Base):
    """Customer order created from an accepted quote."""
    __tablename__ = "sales_orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), unique=True, nullable=True)
    quote_id = Column(Integer, ForeignKey("sales_quotes.id"), nullable=True)
    order_number = Column(String(20), unique=True, nullable=False)  # SORD-YYNNN

    # Snapshot of the RFQ details at order time
    project_name = Column(String(255), nullable=False)
    material = Column(String(255), nullable=False)
    material_grade = Column(String(255))
    finishing = Column(String(255))
    tolerance = Column(String(100))
    quantity = Column(Integer, nullable=False)
    quantity_shipped = Column(Integer, default=0, nullable=False)
    quantity_remaining = Column(Integer, nullable=False)
    notes = Column(Text)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="USD")
    order_status = Column(OrderStatusType, default=OrderStatus.PENDING.value, nullable=False)
    payment_status = Column(PaymentStatusType, default=PaymentStatus.UNPAID.value, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True))
    order_date = Column(DateTime(timezone=True), server_default=func.now())
    estimated_completion = Column(DateTime(timezone=True))
    tracking_number = Column(String(255))
    shipping_carrier = Column(String(100))
    invoice_url = Column(Text)
    customer_purchase_order_number = Column(String(100))

    quality_check_status = Column(QualityCheckStatusType, default=QualityCheckStatus.PENDING.value)
    quality_check_notes = Column(Text)
    customer_approved_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User")
    rfq = relationship("RFQ")
    quote = relationship("SalesQuote")
    shipments = relationship(
        "Shipment", back_populates="order",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    invoices = relationship("SalesInvoice", back_populates="order")


class SalesInvoice(Base):
    """Invoice raised against a sales order."""
    __tablename__ = "sales_invoices"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False, index=True)
    invoice_number = Column(String(20), unique=True, nullable=False)  # SINV-YYNNN
    invoice_url = Column(Text)
    amount_due = Column(Float, nullable=False)
    amount_paid = Column(Float, default=0.0)
    due_date = Column(DateTime(timezone=True))
    is_paid = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("SalesOrder", back_populates="invoices")


class Shipment(Base):
    """One partial delivery; tracking_status advances independently of the order."""
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity_shipped = Column(Integer, nullable=False)
    tracking_number = Column(String(255))
    shipping_carrier = Column(String(100))
    shipment_date = Column(DateTime(timezone=True), server_default=func.now())
    delivery_date = Column(DateTime(timezone=True))
    tracking_status = Column(
        TrackingStatusType,
        default=TrackingStatus.MATERIAL_PROCUREMENT.value,
        nullable=False,
    )
    status = Column(ShipmentStatusType, default=ShipmentStatus.SHIPPED.value, nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("SalesOrder", back_populates="shipments")


# ============= SUPPLIER BIDDING =============

class RfqAssignment(Base):
    """Invitation for a supplier user to quote an RFQ."""
    __tablename__ = "rfq_assignments"
    __table_args__ = (
        UniqueConstraint("rfq_id", "supplier_id", name="uq_assignment_rfq_supplier"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())
    status = Column(AssignmentStatusType, default=AssignmentStatus.ASSIGNED.value, nullable=False)

    rfq = relationship("RFQ", back_populates="assignments")
    supplier = relationship("User")


class SupplierQuote(Base):
    """Supplier bid with a full cost breakdown."""
    __tablename__ = "supplier_quotes"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sqte_number = Column(String(20))
    price = Column(Float, nullable=False)
    lead_time = Column(Integer, nullable=False)  # days
    currency = Column(String(3), default="USD")
    notes = Column(Text)
    quote_file_url = Column(Text)
    status = Column(SupplierQuoteStatusType, default=SupplierQuoteStatus.PENDING.value, nullable=False)

    # Cost breakdown
    tooling_cost = Column(Float)
    part_cost_per_piece = Column(Float)
    material_cost_per_piece = Column(Float)
    machining_cost_per_piece = Column(Float)
    finishing_cost_per_piece = Column(Float)
    packaging_cost_per_piece = Column(Float)
    shipping_cost = Column(Float)
    tax_percentage = Column(Float)
    tax_amount = Column(Float)
    discount_percentage = Column(Float)
    discount_amount = Column(Float)
    total_before_tax = Column(Float)
    total_after_tax = Column(Float)

    valid_until = Column(DateTime(timezone=True))
    payment_terms = Column(String(100), default="Net 30")
    admin_feedback = Column(Text)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True))

    rfq = relationship("RFQ", back_populates="supplier_quotes")
    supplier = relationship("User")


class PurchaseOrder(Base):
    """Admin commitment to a supplier."""
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(20), unique=True, nullable=False)  # PO-NNNN
    supplier_quote_id = Column(Integer, ForeignKey("supplier_quotes.id"), nullable=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=True)
    status = Column(PurchaseOrderStatusType, default=PurchaseOrderStatus.PENDING.value, nullable=False)
    total_amount = Column(Float, nullable=False)
    delivery_date = Column(DateTime(timezone=True))
    notes = Column(Text)
    po_file_url = Column(Text)
    supplier_invoice_url = Column(Text)
    invoice_uploaded_at = Column(DateTime(timezone=True))
    accepted_at = Column(DateTime(timezone=True))
    payment_completed_at = Column(DateTime(timezone=True))
    archived_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    supplier = relationship("User")
    rfq = relationship("RFQ")
    supplier_quote = relationship("SupplierQuote")


# ============= NOTIFICATIONS & MESSAGING =============

class Notification(Base):
    """In-app notice."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(NotificationTypeType, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    related_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Message(Base):
    """Direct message between two users, grouped by thread_id."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    thread_id = Column(String(100), nullable=False, index=True)
    category = Column(String(50), default="general", nullable=False)
    subject = Column(String(255))
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    related_type = Column(String(50))
    related_id = Column(Integer)
    email_notification_sent = Column(Boolean, default=False, nullable=False)
    email_notification_sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
    attachments = relationship(
        "MessageAttachment", back_populates="message",
        cascade="all, delete-orphan", passive_deletes=True,
    )


class MessageAttachment(Base):
    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)
    original_name = Column(String(500), nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String(255))
    file_path = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    message = relationship("Message", back_populates="attachments")
