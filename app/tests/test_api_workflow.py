"""
End-to-end quoting workflow through the HTTP API.

Customer submits an RFQ, S-Hub prices it, the customer accepts and an order is
created. Supplier bidding and the error envelope are covered alongside.
"""
import os
import re

import pytest

from app.core.config import settings
from app.db.models import CompanyType, NotificationType
from app.db.storage import Storage

PDF_BYTES = b"%PDF-1.4 test document"


def submit_rfq(client, headers, **overrides):
    payload = {
        "project_name": "Mounting Bracket",
        "material": "Aluminum",
        "material_grade": "6061-T6",
        "quantity": 50,
    }
    payload.update(overrides)
    return client.post("/api/rfqs", json=payload, headers=headers)


def price_rfq(client, headers, rfq_id, amount="1200.00"):
    return client.post(
        f"/api/admin/rfqs/{rfq_id}/quote",
        data={"amount": amount, "valid_until": "2030-12-31T00:00:00", "notes": "Anodized"},
        headers=headers,
    )


def stored_files(area):
    directory = os.path.join(settings.UPLOAD_DIR, area)
    return set(os.listdir(directory)) if os.path.isdir(directory) else set()


def ordered_rfq(client, admin_headers, customer_headers, **overrides):
    rfq = submit_rfq(client, customer_headers, **overrides).json()
    price_rfq(client, admin_headers, rfq["id"])
    order = client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers).json()
    return rfq, order


class TestQuotingWorkflow:
    """RFQ -> quote -> accept -> order."""

    def test_full_flow(self, client, admin, customer, auth_headers, sent_emails):
        customer_headers = auth_headers(customer)
        admin_headers = auth_headers(admin)

        response = submit_rfq(client, customer_headers)
        assert response.status_code == 201
        rfq = response.json()
        assert rfq["status"] == "submitted"
        assert rfq["material"] == "Aluminum"

        response = price_rfq(client, admin_headers, rfq["id"])
        assert response.status_code == 201
        quote = response.json()
        assert quote["amount"] == 1200.0
        assert re.match(r"^SQTE-\d{5}$", quote["quote_number"])

        detail = client.get(f"/api/rfqs/{rfq['id']}", headers=customer_headers).json()
        assert detail["status"] == "quoted"
        assert detail["quote"]["id"] == quote["id"]

        response = client.post(
            f"/api/rfqs/{rfq['id']}/quote/respond",
            data={"status": "accept", "response": "Go ahead"},
            headers=customer_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert client.get(f"/api/rfqs/{rfq['id']}", headers=customer_headers).json()["status"] == "accepted"

        response = client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers)
        assert response.status_code == 201
        order = response.json()
        assert re.match(r"^SORD-\d{5}$", order["order_number"])
        assert order["quantity"] == 50
        assert order["quantity_remaining"] == 50
        assert order["payment_status"] == "unpaid"

        orders = client.get("/api/orders", headers=customer_headers).json()
        assert [o["id"] for o in orders] == [order["id"]]

        notifications = client.get("/api/notifications", headers=customer_headers).json()
        titles = {n["title"] for n in notifications}
        assert {"Quote Ready", "Order Confirmed"} <= titles

        # RFQ submission notice, quote ready email, quote response notice
        assert sent_emails.await_count == 3

    def test_second_order_rejected(self, client, admin, customer, auth_headers):
        admin_headers = auth_headers(admin)
        rfq = submit_rfq(client, auth_headers(customer)).json()
        price_rfq(client, admin_headers, rfq["id"])
        client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers)

        response = client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Order already exists for this RFQ"}

    def test_quote_requires_amount(self, client, admin, customer, auth_headers):
        rfq = submit_rfq(client, auth_headers(customer)).json()
        response = client.post(
            f"/api/admin/rfqs/{rfq['id']}/quote",
            data={"currency": "USD"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Amount and valid until date are required"

    def test_quote_cannot_be_answered_twice(self, client, admin, customer, auth_headers):
        customer_headers = auth_headers(customer)
        rfq = submit_rfq(client, customer_headers).json()
        price_rfq(client, auth_headers(admin), rfq["id"])

        url = f"/api/rfqs/{rfq['id']}/quote/respond"
        assert client.post(url, data={"status": "decline"}, headers=customer_headers).json()["status"] == "declined"
        assert client.get(f"/api/rfqs/{rfq['id']}", headers=customer_headers).json()["status"] == "declined"
        response = client.post(url, data={"status": "accept"}, headers=customer_headers)
        assert response.status_code == 400

    def test_over_shipment_is_rejected(self, client, admin, customer, auth_headers):
        admin_headers = auth_headers(admin)
        rfq = submit_rfq(client, auth_headers(customer)).json()
        price_rfq(client, admin_headers, rfq["id"])
        order = client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers).json()

        url = f"/api/orders/{order['id']}/shipments"
        assert client.post(url, json={"quantity": 30}, headers=admin_headers).status_code == 201
        response = client.post(url, json={"quantity": 21}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Cannot ship more than remaining quantity"

        refreshed = client.get(f"/api/orders/{order['id']}", headers=admin_headers).json()
        assert refreshed["quantity_shipped"] == 30
        assert refreshed["quantity_remaining"] == 20

    def test_order_carries_customer_po_number(self, client, admin, customer, auth_headers):
        admin_headers = auth_headers(admin)
        rfq = submit_rfq(client, auth_headers(customer)).json()
        price_rfq(client, admin_headers, rfq["id"])

        response = client.post(
            f"/api/admin/rfqs/{rfq['id']}/create-order",
            json={"customer_purchase_order_number": "ACME-PO-77"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["customer_purchase_order_number"] == "ACME-PO-77"


class TestReorder:

    def test_reorder_copies_rfq_and_files(self, client, admin, customer, auth_headers):
        admin_headers = auth_headers(admin)
        customer_headers = auth_headers(customer)
        rfq = submit_rfq(client, customer_headers, notes="Deburr all edges").json()
        client.post(
            "/api/files/upload",
            data={"linked_to_type": "rfq", "linked_to_id": rfq["id"]},
            files=[("files", ("bracket.pdf", PDF_BYTES, "application/pdf"))],
            headers=customer_headers,
        )
        price_rfq(client, admin_headers, rfq["id"])
        order = client.post(f"/api/admin/rfqs/{rfq['id']}/create-order", headers=admin_headers).json()

        url = f"/api/orders/{order['id']}/reorder"
        assert client.post(url, headers=customer_headers).status_code == 400

        client.patch(f"/api/orders/{order['id']}/status", json={"order_status": "delivered"}, headers=admin_headers)
        response = client.post(url, headers=customer_headers)
        assert response.status_code == 201
        reorder = response.json()
        assert reorder["project_name"] == "REORDER: Mounting Bracket"
        assert reorder["status"] == "submitted"
        assert f"Reorder of Order #{order['order_number']}" in reorder["notes"]
        assert "Original notes: Deburr all edges" in reorder["notes"]

        files = client.get(f"/api/admin/rfqs/{reorder['id']}/files", headers=admin_headers).json()
        assert [f["file_name"] for f in files] == ["REORDER_bracket.pdf"]
        response = client.get(f"/api/files/{files[0]['id']}/download", headers=customer_headers)
        assert response.content == PDF_BYTES


class TestInvoices:

    def test_invoice_must_be_real_pdf(self, client, admin, customer, auth_headers):
        admin_headers = auth_headers(admin)
        _, order = ordered_rfq(client, admin_headers, auth_headers(customer))
        before = stored_files("invoices")

        response = client.patch(
            f"/api/orders/{order['id']}/invoice",
            files={"file": ("invoice.pdf", b"not really a pdf", "application/pdf")},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invoice must be a valid PDF file"
        assert stored_files("invoices") == before

        response = client.patch(
            f"/api/orders/{order['id']}/invoice",
            files={"file": ("invoice.pdf", PDF_BYTES, "application/pdf")},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert re.match(r"^SINV-\d{5}$", response.json()["invoice"]["invoice_number"])


class TestAccessControl:

    def test_customer_cannot_see_other_company_rfq(self, client, customer, make_user, auth_headers):
        rfq = submit_rfq(client, auth_headers(customer)).json()
        stranger = make_user("someone@else.example.com")
        response = client.get(f"/api/rfqs/{rfq['id']}", headers=auth_headers(stranger))
        assert response.status_code == 403
        assert response.json() == {"message": "Access denied"}

    def test_admin_routes_require_admin(self, client, customer, auth_headers):
        response = client.get("/api/admin/rfqs", headers=auth_headers(customer))
        assert response.status_code == 403

    def test_missing_token(self, client):
        assert client.get("/api/rfqs").status_code in (401, 403)

    def test_validation_envelope(self, client, customer, auth_headers):
        response = submit_rfq(client, auth_headers(customer), quantity=0)
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation failed"
        assert any(err["field"] == "quantity" for err in body["errors"])


class TestSupplierBidding:

    @pytest.fixture
    def rfq(self, client, customer, auth_headers):
        return submit_rfq(client, auth_headers(customer)).json()

    def test_unassigned_supplier_is_forbidden(self, client, supplier, rfq, auth_headers):
        headers = auth_headers(supplier)
        response = client.get(f"/api/supplier/rfqs/{rfq['id']}", headers=headers)
        assert response.status_code == 403
        assert response.json()["message"] == "You are not assigned to this RFQ"

        response = client.post(
            "/api/supplier/quote",
            data={"rfq_id": rfq["id"], "price": "900", "lead_time": "10"},
            headers=headers,
        )
        assert response.status_code == 403

    def test_assign_bid_finalize(self, client, admin, supplier, rfq, auth_headers):
        admin_headers = auth_headers(admin)
        supplier_headers = auth_headers(supplier)

        response = client.post(
            f"/api/admin/rfqs/{rfq['id']}/assign",
            json={"supplier_ids": [supplier.id]},
            headers=admin_headers,
        )
        assert response.status_code == 200

        assigned = client.get("/api/supplier/rfqs", headers=supplier_headers).json()
        assert [a["rfq_id"] for a in assigned] == [rfq["id"]]
        assert assigned[0]["rfq"]["sqte_number"] == "SQTE-001"

        response = client.post(
            "/api/supplier/quote",
            data={"rfq_id": rfq["id"], "price": "1000", "lead_time": "14", "tax_percentage": "10"},
            headers=supplier_headers,
        )
        assert response.status_code == 201
        bid = response.json()
        assert bid["total_after_tax"] == 1100.0

        admin_titles = {n["title"] for n in client.get("/api/notifications", headers=admin_headers).json()}
        assert "New Supplier Quote Received" in admin_titles

        response = client.post(
            f"/api/admin/rfqs/{rfq['id']}/finalize",
            json={"supplier_quote_id": bid["id"], "markup": 20},
            headers=admin_headers,
        )
        assert response.status_code == 200
        result = response.json()
        assert result["quote"]["amount"] == 1200.0
        assert result["accepted_supplier_quote_id"] == bid["id"]

        supplier_notes = client.get("/api/notifications", headers=supplier_headers).json()
        assert any(n["title"] == "Congratulations! Your Quote Was Selected" for n in supplier_notes)
        assert all(
            n["is_read"] for n in supplier_notes
            if n["type"] == NotificationType.RFQ_ASSIGNMENT.value
        )

    def test_finalize_requires_markup(self, client, admin, rfq, auth_headers):
        response = client.post(
            f"/api/admin/rfqs/{rfq['id']}/finalize",
            json={"supplier_quote_id": 1},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Supplier quote ID and numeric markup are required"

    def test_customer_cannot_use_supplier_portal(self, client, customer, auth_headers):
        assert client.get("/api/supplier/rfqs", headers=auth_headers(customer)).status_code == 403

    def test_quote_file_is_kept_for_admin(self, client, admin, supplier, rfq, auth_headers):
        admin_headers = auth_headers(admin)
        client.post(f"/api/admin/rfqs/{rfq['id']}/assign", json={"supplier_ids": [supplier.id]}, headers=admin_headers)

        response = client.post(
            "/api/supplier/quote",
            data={"rfq_id": rfq["id"], "price": "800", "lead_time": "7"},
            files={"quote_file": ("breakdown.pdf", PDF_BYTES, "application/pdf")},
            headers=auth_headers(supplier),
        )
        assert response.status_code == 201

        bids = client.get(f"/api/admin/rfqs/{rfq['id']}/supplier-quotes", headers=admin_headers).json()
        files = bids[0]["files"]
        assert [f["file_name"] for f in files] == ["breakdown.pdf"]
        assert files[0]["linked_to_type"] == "supplier_quote"

        response = client.get(f"/api/files/{files[0]['id']}/download", headers=admin_headers)
        assert response.status_code == 200
        assert response.content == PDF_BYTES

    def test_rejected_bid_leaves_no_file(self, client, admin, supplier, rfq, auth_headers):
        before = stored_files("supplier_quote")
        bid = {"rfq_id": rfq["id"], "price": "800", "lead_time": "7"}
        upload = {"quote_file": ("breakdown.pdf", PDF_BYTES, "application/pdf")}

        response = client.post("/api/supplier/quote", data=bid, files=upload, headers=auth_headers(supplier))
        assert response.status_code == 403
        assert stored_files("supplier_quote") == before

        client.post(f"/api/admin/rfqs/{rfq['id']}/assign", json={"supplier_ids": [supplier.id]}, headers=auth_headers(admin))
        assert client.post("/api/supplier/quote", data=bid, headers=auth_headers(supplier)).status_code == 201
        after_first = stored_files("supplier_quote")

        response = client.post("/api/supplier/quote", data=bid, files=upload, headers=auth_headers(supplier))
        assert response.status_code == 400
        assert stored_files("supplier_quote") == after_first


class TestPurchaseOrders:

    def test_supplier_accepts_po(self, client, admin, supplier, auth_headers):
        response = client.post(
            "/api/admin/purchase-orders",
            data={"supplier_id": supplier.id, "total_amount": "750"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        po = response.json()
        assert po["order_number"] == "PO-0001"
        assert po["status"] == "pending"

        headers = auth_headers(supplier)
        response = client.post(f"/api/supplier/purchase-orders/{po['id']}/accept", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "accepted"

        response = client.post(f"/api/supplier/purchase-orders/{po['id']}/reject", headers=headers)
        assert response.status_code == 400

    @pytest.fixture
    def po(self, client, admin, supplier, auth_headers):
        return client.post(
            "/api/admin/purchase-orders",
            data={"supplier_id": supplier.id, "total_amount": "750"},
            headers=auth_headers(admin),
        ).json()

    def test_supplier_advances_accepted_po(self, client, supplier, po, auth_headers):
        headers = auth_headers(supplier)
        url = f"/api/supplier/purchase-orders/{po['id']}/status"

        response = client.patch(url, json={"status": "in_progress"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Purchase order must be accepted before it can progress"

        client.post(f"/api/supplier/purchase-orders/{po['id']}/accept", headers=headers)
        for status in ("in_progress", "shipped", "delivered"):
            response = client.patch(url, json={"status": status}, headers=headers)
            assert response.status_code == 200
            assert response.json()["status"] == status

        assert client.patch(url, json={"status": "shipped"}, headers=headers).status_code == 400
        assert client.patch(url, json={"status": "completed"}, headers=headers).status_code == 400

    def test_other_supplier_cannot_advance(self, client, supplier, po, make_user, auth_headers):
        client.post(f"/api/supplier/purchase-orders/{po['id']}/accept", headers=auth_headers(supplier))
        rival = make_user("rival@shop.example.com", "supplier")
        response = client.patch(
            f"/api/supplier/purchase-orders/{po['id']}/status",
            json={"status": "in_progress"},
            headers=auth_headers(rival),
        )
        assert response.status_code == 403

    def test_invoice_only_after_delivery(self, client, supplier, po, auth_headers):
        headers = auth_headers(supplier)
        invoice_url = f"/api/supplier/purchase-orders/{po['id']}/invoice"
        before = stored_files("supplier_invoices")

        response = client.post(
            invoice_url, files={"invoice": ("inv.pdf", PDF_BYTES, "application/pdf")}, headers=headers
        )
        assert response.status_code == 400
        assert response.json()["message"] == (
            "An invoice can only be uploaded once the purchase order is delivered"
        )
        assert stored_files("supplier_invoices") == before

        client.post(f"/api/supplier/purchase-orders/{po['id']}/accept", headers=headers)
        for status in ("in_progress", "shipped", "delivered"):
            client.patch(f"/api/supplier/purchase-orders/{po['id']}/status", json={"status": status}, headers=headers)

        response = client.post(
            invoice_url, files={"invoice": ("inv.pdf", b"plain text", "application/pdf")}, headers=headers
        )
        assert response.status_code == 400
        assert stored_files("supplier_invoices") == before

        response = client.post(
            invoice_url, files={"invoice": ("inv.pdf", PDF_BYTES, "application/pdf")}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["has_supplier_invoice"] is True

    def test_po_requires_supplier_and_amount(self, client, admin, auth_headers):
        response = client.post("/api/admin/purchase-orders", data={"notes": "x"}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["message"] == (
            "Either supplier quote ID or supplier ID and total amount are required"
        )


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuditTrail:

    def test_rfq_history_and_summary(self, client, admin, customer, supplier, auth_headers):
        admin_headers = auth_headers(admin)
        rfq = submit_rfq(client, auth_headers(customer)).json()
        client.post(f"/api/admin/rfqs/{rfq['id']}/assign", json={"supplier_ids": [supplier.id]}, headers=admin_headers)

        history = client.get(f"/api/admin/audit/entity/rfq/{rfq['id']}", headers=admin_headers).json()
        assert [entry["action"] for entry in history] == ["create_rfq", "assign_suppliers"]
        assert history[0]["user_email"] == customer.email

        summary = client.get("/api/admin/audit/summary", headers=admin_headers).json()
        assert summary["total_events"] == 2
        assert {a["action"] for a in summary["top_actions"]} == {"create_rfq", "assign_suppliers"}

    def test_audit_is_admin_only(self, client, customer, auth_headers):
        assert client.get("/api/admin/audit/logs", headers=auth_headers(customer)).status_code == 403


class TestFileAccess:
    """RFQ files are visible to the owner's company, admins and assigned suppliers."""

    @pytest.fixture
    def drawing(self, client, customer, auth_headers):
        rfq = submit_rfq(client, auth_headers(customer)).json()
        stored = client.post(
            "/api/files/upload",
            data={"linked_to_type": "rfq", "linked_to_id": rfq["id"]},
            files=[("files", ("housing.step", b"ISO-10303-21;", "application/octet-stream"))],
            headers=auth_headers(customer),
        ).json()[0]
        return rfq, stored

    def test_owner_and_admin_can_download(self, client, admin, customer, drawing, auth_headers):
        _, stored = drawing
        url = f"/api/files/{stored['id']}/download"
        assert client.get(url, headers=auth_headers(customer)).content == b"ISO-10303-21;"
        assert client.get(url, headers=auth_headers(admin)).status_code == 200

    def test_colleague_can_download(self, client, db_session, make_user, auth_headers):
        company = Storage(db_session).create_company("Acme", CompanyType.CUSTOMER.value)
        db_session.commit()
        owner = make_user("owner@acme.example.com", company_id=company.id)
        colleague = make_user("planner@acme.example.com", company_id=company.id)

        rfq = submit_rfq(client, auth_headers(owner)).json()
        stored = client.post(
            "/api/files/upload",
            data={"linked_to_type": "rfq", "linked_to_id": rfq["id"]},
            files=[("files", ("plate.pdf", PDF_BYTES, "application/pdf"))],
            headers=auth_headers(owner),
        ).json()[0]

        response = client.get(f"/api/files/{stored['id']}/download", headers=auth_headers(colleague))
        assert response.status_code == 200

    def test_stranger_is_denied(self, client, make_user, drawing, auth_headers):
        _, stored = drawing
        stranger = make_user("someone@else.example.com")
        response = client.get(f"/api/files/{stored['id']}/download", headers=auth_headers(stranger))
        assert response.status_code == 403

    def test_only_assigned_supplier_can_download(self, client, admin, supplier, make_user, drawing, auth_headers):
        rfq, stored = drawing
        url = f"/api/files/{stored['id']}/download"
        assert client.get(url, headers=auth_headers(supplier)).status_code == 403

        client.post(f"/api/admin/rfqs/{rfq['id']}/assign", json={"supplier_ids": [supplier.id]}, headers=auth_headers(admin))
        assert client.get(url, headers=auth_headers(supplier)).status_code == 200

        bystander = make_user("bystander@shop.example.com", "supplier")
        assert client.get(url, headers=auth_headers(bystander)).status_code == 403
