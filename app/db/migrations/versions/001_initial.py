"""initial schema with enums

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates all enum types and tables for S-Hub.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'userrole': ('customer', 'supplier', 'admin'),
    'companytype': ('customer', 'supplier'),
    'rfqstatus': ('submitted', 'quoted', 'accepted', 'declined', 'sent_to_suppliers'),
    'quotestatus': ('pending', 'accepted', 'declined'),
    'orderstatus': (
        'waiting_for_po', 'pending', 'material_procurement', 'manufacturing',
        'finishing', 'quality_check', 'packing', 'shipped', 'delivered',
    ),
    'paymentstatus': ('unpaid', 'paid'),
    'qualitycheckstatus': ('pending', 'approved', 'needs_revision'),
    'shipmentstatus': ('shipped', 'delivered'),
    'trackingstatus': (
        'material_procurement', 'manufacturing', 'finishing', 'quality_check',
        'packing', 'shipped', 'delivered',
    ),
    'filetype': ('step', 'pdf', 'excel', 'image', 'quote'),
    'linkedtotype': ('rfq', 'order', 'quality_check', 'supplier_quote'),
    'supplierquotestatus': ('pending', 'accepted', 'not_selected'),
    'assignmentstatus': ('assigned', 'quoted', 'expired'),
    'notificationtype': ('rfq_assignment', 'status_update', 'message', 'order_confirmation'),
    'purchaseorderstatus': (
        'pending', 'accepted', 'declined', 'in_progress', 'shipped',
        'delivered', 'completed', 'cancelled', 'archived',
    ),
}


def enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enum types first
    bind = op.get_bind()
    for name in ENUMS:
        enum(name).create(bind, checkfirst=True)

    # Companies
    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('company_number', sa.String(20), unique=True, nullable=True, index=True),
        sa.Column('company_type', enum('companytype'), nullable=False, server_default='customer'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('contact_email', sa.String(255)),
        sa.Column('phone', sa.String(50)),
        sa.Column('address', sa.Text()),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('country', sa.String(100)),
        sa.Column('postal_code', sa.String(20)),
        sa.Column('website', sa.String(255)),
        sa.Column('industry', sa.String(100)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    # Users
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('title', sa.String(255)),
        sa.Column('phone', sa.String(50)),
        sa.Column('user_number', sa.String(20), unique=True, index=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('company_name_input', sa.String(255)),
        sa.Column('role', enum('userrole'), nullable=False, server_default='customer'),
        sa.Column('is_admin', sa.Boolean(), server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('is_verified', sa.Boolean(), server_default=sa.false()),
        sa.Column('verification_code', sa.String(10)),
        sa.Column('verification_code_expiry', sa.DateTime(timezone=True)),
        sa.Column('reset_code', sa.String(10)),
        sa.Column('reset_code_expiry', sa.DateTime(timezone=True)),
        sa.Column('is_admin_created', sa.Boolean(), server_default=sa.false()),
        sa.Column('must_reset_password', sa.Boolean(), server_default=sa.false()),
        sa.Column('website', sa.String(255)),
        sa.Column('address', sa.Text()),
        sa.Column('capabilities', sa.JSON()),
        sa.Column('certifications', sa.JSON()),
        sa.Column('finishing_capabilities', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_login', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('email', 'role', name='uq_users_email_role'),
    )

    op.create_table('pending_registrations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('role', enum('userrole'), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('company_name', sa.String(255)),
        sa.Column('verification_code', sa.String(10), nullable=False),
        sa.Column('verification_code_expiry', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('email', 'role', name='uq_pending_email_role'),
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), index=True),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
    )

    # RFQs
    op.create_table('rfqs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('project_name', sa.String(255), nullable=False),
        sa.Column('material', sa.String(255), nullable=False),
        sa.Column('material_grade', sa.String(255)),
        sa.Column('finishing', sa.String(255)),
        sa.Column('tolerance', sa.String(100)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('special_instructions', sa.Text()),
        sa.Column('manufacturing_process', sa.String(255)),
        sa.Column('manufacturing_subprocess', sa.String(255)),
        sa.Column('international_manufacturing_ok', sa.Boolean(), server_default=sa.false()),
        sa.Column('status', enum('rfqstatus'), nullable=False, server_default='submitted'),
        sa.Column('sqte_number', sa.String(20), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('files',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=False),
        sa.Column('file_size', sa.Integer()),
        sa.Column('file_type', enum('filetype'), nullable=False),
        sa.Column('linked_to_type', enum('linkedtotype'), nullable=False),
        sa.Column('linked_to_id', sa.Integer(), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_files_link', 'files', ['linked_to_type', 'linked_to_id'])

    # Quotes, orders, invoices, shipments
    op.create_table('sales_quotes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('quote_number', sa.String(20), unique=True, nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('estimated_delivery_date', sa.DateTime(timezone=True)),
        sa.Column('quote_file_url', sa.Text()),
        sa.Column('notes', sa.Text()),
        sa.Column('status', enum('quotestatus'), nullable=False, server_default='pending'),
        sa.Column('customer_response', sa.Text()),
        sa.Column('purchase_order_url', sa.Text()),
        sa.Column('purchase_order_number', sa.String(100)),
        sa.Column('responded_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('sales_orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), unique=True, nullable=True),
        sa.Column('quote_id', sa.Integer(), sa.ForeignKey('sales_quotes.id'), nullable=True),
        sa.Column('order_number', sa.String(20), unique=True, nullable=False),
        sa.Column('project_name', sa.String(255), nullable=False),
        sa.Column('material', sa.String(255), nullable=False),
        sa.Column('material_grade', sa.String(255)),
        sa.Column('finishing', sa.String(255)),
        sa.Column('tolerance', sa.String(100)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_shipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_remaining', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('order_status', enum('orderstatus'), nullable=False, server_default='pending'),
        sa.Column('payment_status', enum('paymentstatus'), nullable=False, server_default='unpaid'),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_at', sa.DateTime(timezone=True)),
        sa.Column('order_date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('estimated_completion', sa.DateTime(timezone=True)),
        sa.Column('tracking_number', sa.String(255)),
        sa.Column('shipping_carrier', sa.String(100)),
        sa.Column('invoice_url', sa.Text()),
        sa.Column('customer_purchase_order_number', sa.String(100)),
        sa.Column('quality_check_status', enum('qualitycheckstatus'), server_default='pending'),
        sa.Column('quality_check_notes', sa.Text()),
        sa.Column('customer_approved_at', sa.DateTime(timezone=True)),
    )

    op.create_table('sales_invoices',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('sales_orders.id'), nullable=False, index=True),
        sa.Column('invoice_number', sa.String(20), unique=True, nullable=False),
        sa.Column('invoice_url', sa.Text()),
        sa.Column('amount_due', sa.Float(), nullable=False),
        sa.Column('amount_paid', sa.Float(), server_default='0'),
        sa.Column('due_date', sa.DateTime(timezone=True)),
        sa.Column('is_paid', sa.Boolean(), server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('shipments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('quantity_shipped', sa.Integer(), nullable=False),
        sa.Column('tracking_number', sa.String(255)),
        sa.Column('shipping_carrier', sa.String(100)),
        sa.Column('shipment_date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('delivery_date', sa.DateTime(timezone=True)),
        sa.Column('tracking_status', enum('trackingstatus'), nullable=False,
                  server_default='material_procurement'),
        sa.Column('status', enum('shipmentstatus'), nullable=False, server_default='shipped'),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Supplier bidding
    op.create_table('rfq_assignments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('status', enum('assignmentstatus'), nullable=False, server_default='assigned'),
        sa.UniqueConstraint('rfq_id', 'supplier_id', name='uq_assignment_rfq_supplier'),
    )

    op.create_table('supplier_quotes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('sqte_number', sa.String(20)),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('lead_time', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('notes', sa.Text()),
        sa.Column('quote_file_url', sa.Text()),
        sa.Column('status', enum('supplierquotestatus'), nullable=False, server_default='pending'),
        sa.Column('tooling_cost', sa.Float()),
        sa.Column('part_cost_per_piece', sa.Float()),
        sa.Column('material_cost_per_piece', sa.Float()),
        sa.Column('machining_cost_per_piece', sa.Float()),
        sa.Column('finishing_cost_per_piece', sa.Float()),
        sa.Column('packaging_cost_per_piece', sa.Float()),
        sa.Column('shipping_cost', sa.Float()),
        sa.Column('tax_percentage', sa.Float()),
        sa.Column('tax_amount', sa.Float()),
        sa.Column('discount_percentage', sa.Float()),
        sa.Column('discount_amount', sa.Float()),
        sa.Column('total_before_tax', sa.Float()),
        sa.Column('total_after_tax', sa.Float()),
        sa.Column('valid_until', sa.DateTime(timezone=True)),
        sa.Column('payment_terms', sa.String(100), server_default='Net 30'),
        sa.Column('admin_feedback', sa.Text()),
        sa.Column('submitted_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('responded_at', sa.DateTime(timezone=True)),
    )

    op.create_table('purchase_orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('order_number', sa.String(20), unique=True, nullable=False),
        sa.Column('supplier_quote_id', sa.Integer(), sa.ForeignKey('supplier_quotes.id'), nullable=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=True),
        sa.Column('status', enum('purchaseorderstatus'), nullable=False, server_default='pending'),
        sa.Column('total_amount', sa.Float(), nullable=False),
        sa.Column('delivery_date', sa.DateTime(timezone=True)),
        sa.Column('notes', sa.Text()),
        sa.Column('po_file_url', sa.Text()),
        sa.Column('supplier_invoice_url', sa.Text()),
        sa.Column('invoice_uploaded_at', sa.DateTime(timezone=True)),
        sa.Column('accepted_at', sa.DateTime(timezone=True)),
        sa.Column('payment_completed_at', sa.DateTime(timezone=True)),
        sa.Column('archived_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Notifications & messaging
    op.create_table('notifications',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('type', enum('notificationtype'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('related_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('messages',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('receiver_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('thread_id', sa.String(100), nullable=False, index=True),
        sa.Column('category', sa.String(50), nullable=False, server_default='general'),
        sa.Column('subject', sa.String(255)),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('related_type', sa.String(50)),
        sa.Column('related_id', sa.Integer()),
        sa.Column('email_notification_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_notification_sent_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    op.create_table('message_attachments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('original_name', sa.String(500), nullable=False),
        sa.Column('file_size', sa.Integer()),
        sa.Column('mime_type', sa.String(255)),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('message_attachments')
    op.drop_table('messages')
    op.drop_table('notifications')
    op.drop_table('purchase_orders')
    op.drop_table('supplier_quotes')
    op.drop_table('rfq_assignments')
    op.drop_table('shipments')
    op.drop_table('sales_invoices')
    op.drop_table('sales_orders')
    op.drop_table('sales_quotes')
    op.drop_index('ix_files_link', table_name='files')
    op.drop_table('files')
    op.drop_table('rfqs')
    op.drop_table('audit_logs')
    op.drop_table('pending_registrations')
    op.drop_table('users')
    op.drop_table('companies')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
