"""
Storage-layer tests against an in-memory database.

These cover the business rules the API routes rely on: (email, role)
uniqueness, sequence numbers, the one-order-per-RFQ rule, partial shipments,
supplier bidding and purchase order transitions.
"""
import re
from datetime import timedelta

import pytest

from app.db.models import (
    CompanyType, OrderStatus, PaymentStatus, PurchaseOrderStatus,
    QuoteStatus, RFQStatus, SupplierQuoteStatus, UserRole,
)
from app.db.storage import Storage, utcnow


@pytest.fixture
def storage(db_session):
    return Storage(db_session)


@pytest.fixture
def quoted_rfq(storage, db_session, customer):
    """RFQ for 50 aluminum parts with a pending 1200.00 quote."""
    rfq = storage.create_rfq(
        customer.id,
        project_name="Bracket",
        material="Aluminum",
        quantity=50,
    )
    storage.create_quote(rfq, amount=1200.0, valid_until=utcnow() + timedelta(days=30))
    db_session.commit()
    return rfq


class TestUsers:
    """Accounts are keyed by (email, role)."""

    def test_duplicate_email_and_role_rejected(self, storage, customer):
        with pytest.raises(ValueError, match="User already exists with this role"):
            storage.create_user(email=customer.email, hashed_password="x", role=UserRole.CUSTOMER.value)

    def test_same_email_different_role_allowed(self, storage, db_session, customer):
        supplier_login = storage.create_user(
            email=customer.email, hashed_password="x", role=UserRole.SUPPLIER.value
        )
        db_session.commit()
        assert supplier_login.id != customer.id
        assert len(storage.get_users_by_email(customer.email)) == 2

    def test_user_numbers_are_sequential(self, storage, db_session):
        first = storage.create_user(email="a@example.com", hashed_password="x")
        second = storage.create_user(email="b@example.com", hashed_password="x")
        db_session.commit()
        assert first.user_number == "100010"
        assert second.user_number == "100011"

    def test_racing_duplicate_is_not_a_numbering_failure(self, storage, customer, monkeypatch):
        # Another request inserted the same (email, role) after the lookup ran
        monkeypatch.setattr(storage, "get_user_by_email_role", lambda email, role: None)
        with pytest.raises(ValueError, match="User already exists with this role"):
            storage.create_user(email=customer.email, hashed_password="x", role=UserRole.CUSTOMER.value)

    def test_user_with_uploads_cannot_be_deleted(self, storage, db_session, customer, make_user):
        colleague = make_user("planner@acme.example.com")
        rfq = storage.create_rfq(customer.id, project_name="Shared", material="Steel", quantity=5)
        storage.create_file(colleague.id, "plan.pdf", "/tmp/plan.pdf", "pdf", "rfq", rfq.id)
        db_session.commit()

        with pytest.raises(ValueError, match="uploaded files"):
            storage.delete_user(colleague)

        bystander = make_user("idle@acme.example.com")
        storage.delete_user(bystander)
        db_session.commit()
        assert storage.get_user(bystander.id) is None


class TestCompanies:

    def test_customer_numbers_increment(self, storage, db_session):
        first = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        second = storage.create_company("Globex", CompanyType.CUSTOMER.value)
        vendor = storage.create_company("Machining Co", CompanyType.SUPPLIER.value)
        db_session.commit()
        assert first.company_number == "CU0001"
        assert second.company_number == "CU0002"
        assert vendor.company_number == "V0001"

    def test_find_or_create_is_case_insensitive(self, storage, db_session):
        company = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        db_session.commit()
        assert storage.find_or_create_company("  acme ", CompanyType.CUSTOMER.value).id == company.id

    def test_colleagues_share_rfqs(self, storage, db_session, make_user):
        company = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        db_session.commit()
        alice = make_user("alice@acme.example.com", company_id=company.id)
        bob = make_user("bob@acme.example.com", company_id=company.id)
        rfq = storage.create_rfq(alice.id, project_name="Shared", material="Steel", quantity=5)
        db_session.commit()
        assert storage.can_access_rfq(bob, rfq)
        assert [r.id for r in storage.list_rfqs_for_user(bob)] == [rfq.id]

    def test_merge_moves_users_to_primary(self, storage, db_session, make_user):
        primary = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        duplicate = storage.create_company("ACME Inc", CompanyType.CUSTOMER.value)
        db_session.commit()
        alice = make_user("alice@acme.example.com", company_id=primary.id)
        bob = make_user("bob@acme.example.com", company_id=duplicate.id)
        duplicate_id = duplicate.id

        storage.merge_companies(primary, [duplicate_id])
        db_session.commit()

        assert storage.get_company(duplicate_id) is None
        assert {u.id for u in storage.get_company_users(primary.id)} == {alice.id, bob.id}
        rfq = storage.create_rfq(bob.id, project_name="Merged", material="Steel", quantity=1)
        assert storage.can_access_rfq(alice, rfq)

    def test_merge_needs_a_secondary(self, storage, db_session):
        primary = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        db_session.commit()
        with pytest.raises(ValueError, match="At least one secondary"):
            storage.merge_companies(primary, [primary.id])

    def test_assign_number(self, storage, db_session):
        first = storage.create_company("Acme", CompanyType.CUSTOMER.value)
        second = storage.create_company("Globex", CompanyType.CUSTOMER.value)
        db_session.commit()

        storage.assign_company_number(second, " cu0042 ")
        assert second.company_number == "CU0042"
        assert not storage.is_company_number_available("CU0042")

        with pytest.raises(ValueError, match="already in use"):
            storage.assign_company_number(first, "CU0042")
        with pytest.raises(ValueError, match="must look like"):
            storage.assign_company_number(first, "ACME-1")


class TestQuotes:

    def test_quote_moves_rfq_to_quoted(self, storage, quoted_rfq):
        quote = storage.get_quote_for_rfq(quoted_rfq.id)
        assert re.match(r"^SQTE-\d{5}$", quote.quote_number)
        assert quote.status == QuoteStatus.PENDING.value
        assert storage.get_rfq(quoted_rfq.id).status == RFQStatus.QUOTED.value

    def test_accepting_updates_quote_and_rfq(self, storage, db_session, quoted_rfq):
        quote = storage.get_quote_for_rfq(quoted_rfq.id)
        storage.respond_to_quote(quote, accept=True, response="Looks good")
        db_session.commit()
        assert quote.status == QuoteStatus.ACCEPTED.value
        assert storage.get_rfq(quoted_rfq.id).status == RFQStatus.ACCEPTED.value


class TestOrders:

    def test_order_snapshots_rfq(self, storage, db_session, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        db_session.commit()
        assert re.match(r"^SORD-\d{5}$", order.order_number)
        assert order.material == "Aluminum"
        assert order.quantity == 50
        assert order.quantity_remaining == 50
        assert order.amount == 1200.0
        assert order.payment_status == PaymentStatus.UNPAID.value

    def test_second_order_for_rfq_rejected(self, storage, db_session, quoted_rfq):
        storage.create_order_from_rfq(quoted_rfq)
        db_session.commit()
        with pytest.raises(ValueError, match="Order already exists for this RFQ"):
            storage.create_order_from_rfq(quoted_rfq)

    def test_order_requires_quote(self, storage, customer):
        rfq = storage.create_rfq(customer.id, project_name="Unquoted", material="Steel", quantity=1)
        with pytest.raises(ValueError, match="Quote not found"):
            storage.create_order_from_rfq(rfq)

    def test_marking_paid_archives_order(self, storage, db_session, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        storage.create_invoice(order, "/uploads/invoice.pdf")
        storage.update_payment_status(order, PaymentStatus.PAID.value)
        db_session.commit()
        db_session.expire_all()

        assert order.is_archived is True
        assert order.archived_at is not None
        assert len(order.invoices) == 1
        assert all(invoice.is_paid for invoice in order.invoices)
        assert storage.list_all_orders(archived=True)[0].id == order.id
        assert storage.list_all_orders(archived=False) == []

    def test_reorder_copies_source_rfq_notes(self, storage, db_session, quoted_rfq, customer):
        quoted_rfq.notes = "Deburr all edges"
        order = storage.create_order_from_rfq(quoted_rfq, notes="Rush job")
        storage.update_order_status(order, OrderStatus.DELIVERED.value)
        db_session.commit()

        reorder = storage.create_reorder_rfq(order, customer)
        assert reorder.project_name == "REORDER: Bracket"
        assert reorder.notes.endswith("Original notes: Deburr all edges")
        assert reorder.status == RFQStatus.SUBMITTED.value

    def test_reopen_clears_archive(self, storage, db_session, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        storage.update_payment_status(order, PaymentStatus.PAID.value)
        storage.reopen_order(order)
        db_session.commit()
        assert order.is_archived is False
        assert order.payment_status == PaymentStatus.UNPAID.value


class TestShipments:
    """Partial shipments track the remaining quantity."""

    def test_partial_then_final_shipment(self, storage, db_session, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        storage.record_shipment(order, 20, tracking_number="1Z999")
        assert order.quantity_shipped == 20
        assert order.quantity_remaining == 30
        assert order.tracking_number == "1Z999"
        assert order.order_status != OrderStatus.SHIPPED.value

        storage.record_shipment(order, 30)
        db_session.commit()
        assert order.quantity_remaining == 0
        assert order.order_status == OrderStatus.SHIPPED.value
        assert len(storage.list_shipments(order.id)) == 2

    def test_over_shipment_leaves_order_untouched(self, storage, db_session, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        storage.record_shipment(order, 45)
        db_session.commit()

        with pytest.raises(ValueError, match="Cannot ship more than remaining quantity"):
            storage.record_shipment(order, 6)
        assert order.quantity_shipped == 45
        assert order.quantity_remaining == 5
        assert len(storage.list_shipments(order.id)) == 1

    def test_zero_quantity_rejected(self, storage, quoted_rfq):
        order = storage.create_order_from_rfq(quoted_rfq)
        with pytest.raises(ValueError, match="Valid quantity is required"):
            storage.record_shipment(order, 0)


class TestSupplierBidding:

    @pytest.fixture
    def open_rfq(self, storage, db_session, customer, supplier):
        rfq = storage.create_rfq(customer.id, project_name="Housing", material="Steel", quantity=10)
        storage.assign_suppliers(rfq, [supplier.id])
        db_session.commit()
        return rfq

    def test_assignment_sets_reference_and_status(self, storage, open_rfq):
        assert open_rfq.sqte_number == "SQTE-001"
        assert open_rfq.status == RFQStatus.SENT_TO_SUPPLIERS.value

    def test_reassigning_skips_existing(self, storage, open_rfq, supplier):
        assert storage.assign_suppliers(open_rfq, [supplier.id]) == []

    def test_unknown_supplier_rejected(self, storage, open_rfq, customer):
        with pytest.raises(ValueError, match="not found"):
            storage.assign_suppliers(open_rfq, [customer.id])

    def test_totals_apply_discount_then_tax(self, storage, db_session, open_rfq, supplier):
        quote = storage.create_supplier_quote(
            open_rfq, supplier, price=1000.0, lead_time=14,
            discount_percentage=10.0, tax_percentage=5.0,
        )
        db_session.commit()
        assert quote.discount_amount == 100.0
        assert quote.total_before_tax == 900.0
        assert quote.tax_amount == 45.0
        assert quote.total_after_tax == 945.0
        assert quote.sqte_number == open_rfq.sqte_number
        assert storage.get_assignment(open_rfq.id, supplier.id).status == "quoted"

    def test_unassigned_supplier_cannot_bid(self, storage, customer, make_user):
        outsider = make_user("other@shop.example.com", UserRole.SUPPLIER.value)
        rfq = storage.create_rfq(customer.id, project_name="Private", material="Brass", quantity=3)
        with pytest.raises(PermissionError):
            storage.create_supplier_quote(rfq, outsider, price=10.0, lead_time=2)

    def test_duplicate_bid_rejected(self, storage, open_rfq, supplier):
        storage.create_supplier_quote(open_rfq, supplier, price=10.0, lead_time=2)
        with pytest.raises(ValueError, match="already submitted"):
            storage.create_supplier_quote(open_rfq, supplier, price=12.0, lead_time=2)

    def test_finalize_applies_markup(self, storage, db_session, open_rfq, supplier, make_user):
        rival = make_user("rival@shop.example.com", UserRole.SUPPLIER.value)
        storage.assign_suppliers(open_rfq, [rival.id])
        winner = storage.create_supplier_quote(open_rfq, supplier, price=1000.0, lead_time=10)
        loser = storage.create_supplier_quote(open_rfq, rival, price=1100.0, lead_time=7)
        db_session.commit()

        sales_quote, losers = storage.finalize_rfq(open_rfq, winner, markup=25)
        db_session.commit()

        assert sales_quote.amount == 1250.0
        assert winner.status == SupplierQuoteStatus.ACCEPTED.value
        assert [q.id for q in losers] == [loser.id]
        assert loser.status == SupplierQuoteStatus.NOT_SELECTED.value
        assert storage.get_rfq(open_rfq.id).status == RFQStatus.QUOTED.value


class TestPurchaseOrders:

    def test_supplier_accepts_pending_po(self, storage, db_session, supplier):
        po = storage.create_purchase_order(supplier.id, total_amount=500.0)
        db_session.commit()
        assert po.order_number == "PO-0001"
        storage.respond_to_purchase_order(po, accept=True)
        assert po.status == PurchaseOrderStatus.ACCEPTED.value
        assert po.accepted_at is not None

        with pytest.raises(ValueError, match="not in pending status"):
            storage.respond_to_purchase_order(po, accept=False)

    def test_only_delivered_po_can_be_archived(self, storage, db_session, supplier):
        po = storage.create_purchase_order(supplier.id, total_amount=500.0)
        with pytest.raises(ValueError, match="Only delivered"):
            storage.archive_purchase_order(po)

        storage.update_purchase_order_status(po, PurchaseOrderStatus.DELIVERED.value)
        storage.archive_purchase_order(po)
        db_session.commit()
        assert po.status == PurchaseOrderStatus.ARCHIVED.value
        assert po.archived_at is not None

    def test_supplier_advance_is_forward_only(self, storage, db_session, supplier):
        po = storage.create_purchase_order(supplier.id, total_amount=500.0)
        with pytest.raises(ValueError, match="must be accepted"):
            storage.advance_purchase_order(po, PurchaseOrderStatus.IN_PROGRESS.value)

        storage.respond_to_purchase_order(po, accept=True)
        storage.advance_purchase_order(po, PurchaseOrderStatus.SHIPPED.value)
        assert po.status == PurchaseOrderStatus.SHIPPED.value
        with pytest.raises(ValueError, match="already shipped"):
            storage.advance_purchase_order(po, PurchaseOrderStatus.IN_PROGRESS.value)
        with pytest.raises(ValueError, match="Status must be one of"):
            storage.advance_purchase_order(po, PurchaseOrderStatus.ARCHIVED.value)

    def test_invoice_waits_for_delivery(self, storage, db_session, supplier):
        po = storage.create_purchase_order(supplier.id, total_amount=500.0)
        storage.respond_to_purchase_order(po, accept=True)
        with pytest.raises(ValueError, match="once the purchase order is delivered"):
            storage.attach_supplier_invoice(po, "/tmp/inv.pdf")
        assert po.supplier_invoice_url is None

        storage.advance_purchase_order(po, PurchaseOrderStatus.DELIVERED.value)
        storage.attach_supplier_invoice(po, "/tmp/inv.pdf")
        assert po.invoice_uploaded_at is not None


class TestMessages:

    def test_replies_reuse_thread(self, storage, db_session, customer, admin):
        first = storage.send_message(customer, admin.id, "Hello", category="rfq")
        reply = storage.send_message(admin, customer.id, "Hi there", category="rfq")
        other = storage.send_message(customer, admin.id, "Billing question", category="billing")
        db_session.commit()

        assert reply.thread_id == first.thread_id
        assert other.thread_id != first.thread_id
        assert first.thread_id.startswith(f"{min(customer.id, admin.id)}-{max(customer.id, admin.id)}-")

    def test_outsider_cannot_post_to_thread(self, storage, customer, admin, supplier):
        message = storage.send_message(customer, admin.id, "Hello")
        with pytest.raises(PermissionError):
            storage.send_message(supplier, admin.id, "Hijack", thread_id=message.thread_id)

    def test_participant_cannot_add_receiver_to_thread(self, storage, customer, admin, supplier):
        message = storage.send_message(customer, admin.id, "Hello")
        with pytest.raises(PermissionError, match="Receiver is not a participant"):
            storage.send_message(admin, supplier.id, "Look at this", thread_id=message.thread_id)

    def test_mark_thread_read_only_affects_receiver(self, storage, db_session, customer, admin):
        message = storage.send_message(customer, admin.id, "Hello")
        db_session.commit()
        assert storage.unread_message_count(admin.id) == 1
        assert storage.mark_thread_read(customer.id, message.thread_id) == 0
        assert storage.mark_thread_read(admin.id, message.thread_id) == 1
        assert storage.unread_message_count(admin.id) == 0
