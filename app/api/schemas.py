"""
Response schemas shared by several routers.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ORMModel(BaseModel):
    model_config = {"from_attributes": True}


class UserOut(ORMModel):
    id: int
    email: str
    name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    user_number: Optional[str] = None
    role: str
    is_admin: bool = False
    is_active: bool = True
    is_verified: bool = False
    must_reset_password: bool = False
    company_id: Optional[int] = None
    company_name_input: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    capabilities: Optional[List[str]] = None
    certifications: Optional[List[str]] = None
    finishing_capabilities: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class CompanyOut(ORMModel):
    id: int
    company_number: Optional[str] = None
    company_type: str
    name: str
    contact_email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class RFQOut(ORMModel):
    id: int
    user_id: int
    project_name: str
    material: str
    material_grade: Optional[str] = None
    finishing: Optional[str] = None
    tolerance: Optional[str] = None
    quantity: int
    notes: Optional[str] = None
    special_instructions: Optional[str] = None
    manufacturing_process: Optional[str] = None
    manufacturing_subprocess: Optional[str] = None
    international_manufacturing_ok: Optional[bool] = False
    status: str
    sqte_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FileOut(ORMModel):
    id: int
    user_id: int
    file_name: str
    file_size: Optional[int] = None
    file_type: str
    linked_to_type: str
    linked_to_id: int
    uploaded_at: Optional[datetime] = None


class QuoteOut(ORMModel):
    id: int
    rfq_id: int
    quote_number: str
    amount: float
    currency: Optional[str] = "USD"
    valid_until: datetime
    estimated_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    status: str
    customer_response: Optional[str] = None
    purchase_order_number: Optional[str] = None
    has_quote_file: bool = False
    has_purchase_order: bool = False
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_quote(cls, quote) -> "QuoteOut":
        out = cls.model_validate(quote)
        out.has_quote_file = bool(quote.quote_file_url)
        out.has_purchase_order = bool(quote.purchase_order_url)
        return out


class InvoiceOut(ORMModel):
    id: int
    order_id: int
    invoice_number: str
    amount_due: float
    amount_paid: Optional[float] = 0.0
    due_date: Optional[datetime] = None
    is_paid: bool = False
    created_at: Optional[datetime] = None


class OrderOut(ORMModel):
    id: int
    user_id: int
    rfq_id: Optional[int] = None
    quote_id: Optional[int] = None
    order_number: str
    project_name: str
    material: str
    material_grade: Optional[str] = None
    finishing: Optional[str] = None
    tolerance: Optional[str] = None
    quantity: int
    quantity_shipped: int
    quantity_remaining: int
    notes: Optional[str] = None
    amount: float
    currency: Optional[str] = "USD"
    order_status: str
    payment_status: str
    is_archived: bool
    archived_at: Optional[datetime] = None
    order_date: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    customer_purchase_order_number: Optional[str] = None
    quality_check_status: Optional[str] = None
    quality_check_notes: Optional[str] = None
    customer_approved_at: Optional[datetime] = None
    invoices: List[InvoiceOut] = []


class ShipmentOut(ORMModel):
    id: int
    order_id: int
    quantity_shipped: int
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    shipment_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    tracking_status: str
    status: str
    notes: Optional[str] = None


class AssignmentOut(ORMModel):
    id: int
    rfq_id: int
    supplier_id: int
    assigned_at: Optional[datetime] = None
    status: str


class SupplierQuoteOut(ORMModel):
    id: int
    rfq_id: int
    supplier_id: int
    sqte_number: Optional[str] = None
    price: float
    lead_time: int
    currency: Optional[str] = "USD"
    notes: Optional[str] = None
    status: str
    tooling_cost: Optional[float] = None
    part_cost_per_piece: Optional[float] = None
    material_cost_per_piece: Optional[float] = None
    machining_cost_per_piece: Optional[float] = None
    finishing_cost_per_piece: Optional[float] = None
    packaging_cost_per_piece: Optional[float] = None
    shipping_cost: Optional[float] = None
    tax_percentage: Optional[float] = None
    tax_amount: Optional[float] = None
    discount_percentage: Optional[float] = None
    discount_amount: Optional[float] = None
    total_before_tax: Optional[float] = None
    total_after_tax: Optional[float] = None
    valid_until: Optional[datetime] = None
    payment_terms: Optional[str] = None
    admin_feedback: Optional[str] = None
    submitted_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


class PurchaseOrderStatusUpdate(BaseModel):
    status: str


class PurchaseOrderOut(ORMModel):
    id: int
    order_number: str
    supplier_quote_id: Optional[int] = None
    supplier_id: int
    rfq_id: Optional[int] = None
    status: str
    total_amount: float
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    has_po_file: bool = False
    has_supplier_invoice: bool = False
    invoice_uploaded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    payment_completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_po(cls, po) -> "PurchaseOrderOut":
        out = cls.model_validate(po)
        out.has_po_file = bool(po.po_file_url)
        out.has_supplier_invoice = bool(po.supplier_invoice_url)
        return out


class NotificationOut(ORMModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    is_read: bool
    related_id: Optional[int] = None
    created_at: Optional[datetime] = None


class AttachmentOut(ORMModel):
    id: int
    message_id: int
    original_name: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None


class MessageOut(ORMModel):
    id: int
    sender_id: int
    receiver_id: int
    thread_id: str
    category: str
    subject: Optional[str] = None
    content: str
    is_read: bool
    related_type: Optional[str] = None
    related_id: Optional[int] = None
    created_at: Optional[datetime] = None
    attachments: List[AttachmentOut] = []
