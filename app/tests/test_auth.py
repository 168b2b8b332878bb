"""
Tests for signup verification, login and password reset.
"""
from app.core.config import settings
from app.db.models import PendingRegistration, User, UserRole


def register(client, email="new@acme.example.com", role="customer", company="Acme Tooling"):
    return client.post("/api/auth/register", json={
        "email": email,
        "password": "Secret123",
        "name": "New Buyer",
        "company": company,
        "role": role,
    })


class TestRegistration:
    """Signup creates a pending registration until the emailed code is confirmed."""

    def test_register_verify_login(self, client, db_session, sent_emails):
        response = register(client)
        assert response.status_code == 200
        assert response.json()["requires_verification"] is True
        assert db_session.query(User).filter(User.email == "new@acme.example.com").count() == 0

        pending = db_session.query(PendingRegistration).filter(
            PendingRegistration.email == "new@acme.example.com"
        ).one()
        assert len(pending.verification_code) == 6
        sent_emails.assert_awaited()

        response = client.post("/api/auth/verify-email", json={
            "email": "new@acme.example.com", "code": pending.verification_code, "role": "customer",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["token"]
        assert body["user"]["is_verified"] is True
        assert body["user"]["company_id"] is not None

        db_session.expire_all()
        assert db_session.query(PendingRegistration).count() == 0

        response = client.post("/api/auth/login", json={"email": "new@acme.example.com", "password": "Secret123"})
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "new@acme.example.com"

    def test_wrong_code_rejected(self, client):
        register(client)
        response = client.post("/api/auth/verify-email", json={
            "email": "new@acme.example.com", "code": "000000x", "role": "customer",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid verification code"

    def test_same_email_can_register_as_supplier(self, client, customer):
        response = register(client, email=customer.email, role="supplier", company="Buyer Machining")
        assert response.status_code == 200

    def test_duplicate_role_rejected(self, client, customer):
        response = register(client, email=customer.email, role="customer")
        assert response.status_code == 400
        assert response.json()["message"] == "User already exists with this role"

    def test_admin_cannot_be_self_selected(self, client):
        response = register(client, role="admin")
        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"

    def test_weak_password_rejected(self, client):
        response = client.post("/api/auth/register", json={
            "email": "weak@acme.example.com", "password": "onlyletters", "name": "Weak",
        })
        assert response.status_code == 400

    def test_notification_address_becomes_admin(self, client, db_session):
        response = register(client, email=settings.ADMIN_NOTIFICATION_EMAIL, company=None)
        assert response.status_code == 200
        assert response.json()["user"]["role"] == UserRole.ADMIN.value
        assert db_session.query(PendingRegistration).count() == 0

    def test_failed_email_discards_registration(self, client, db_session, sent_emails):
        sent_emails.return_value = False
        response = register(client)
        assert response.status_code == 500
        db_session.expire_all()
        assert db_session.query(PendingRegistration).count() == 0


class TestLogin:

    def test_invalid_credentials(self, client, customer):
        response = client.post("/api/auth/login", json={"email": customer.email, "password": "Wrong123"})
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid credentials"}

    def test_supplier_login_needs_role(self, client, supplier, password):
        payload = {"email": supplier.email, "password": password}
        assert client.post("/api/auth/login", json=payload).status_code == 400

        response = client.post("/api/auth/login", json={**payload, "role": "supplier"})
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "supplier"

    def test_admin_falls_back_from_customer_role(self, client, admin, password):
        response = client.post("/api/auth/login", json={"email": admin.email, "password": password})
        assert response.status_code == 200
        assert response.json()["user"]["is_admin"] is True

    def test_me(self, client, customer, auth_headers):
        response = client.get("/api/auth/me", headers=auth_headers(customer))
        assert response.status_code == 200
        assert response.json()["email"] == customer.email


class TestPasswordReset:

    def test_forgot_and_reset(self, client, db_session, customer):
        response = client.post("/api/auth/forgot-password", json={"email": customer.email})
        assert response.status_code == 200

        db_session.expire_all()
        user = db_session.get(User, customer.id)
        assert user.reset_code

        response = client.post("/api/auth/reset-password", json={
            "email": customer.email, "code": user.reset_code, "new_password": "Fresh4567",
        })
        assert response.status_code == 200

        response = client.post("/api/auth/login", json={"email": customer.email, "password": "Fresh4567"})
        assert response.status_code == 200


class TestAdminCreatedAccount:
    """Accounts created by an admin must swap the temporary password on first login."""

    def create_account(self, client, admin, auth_headers):
        response = client.post("/api/admin/users", headers=auth_headers(admin), json={
            "email": "planner@acme.example.com",
            "password": "Temp1234",
            "name": "Planner",
            "role": "customer",
        })
        assert response.status_code == 201
        return response.json()["id"]

    def test_first_login_requires_reset(self, client, admin, auth_headers):
        user_id = self.create_account(client, admin, auth_headers)

        response = client.post("/api/auth/login", json={"email": "planner@acme.example.com", "password": "Temp1234"})
        assert response.status_code == 200
        assert response.json()["requires_password_reset"] is True

        response = client.post("/api/auth/admin-password-reset", json={
            "user_id": user_id, "current_password": "Temp1234", "new_password": "Chosen9876",
        })
        assert response.status_code == 200
        assert response.json()["token"]

        response = client.post("/api/auth/login", json={"email": "planner@acme.example.com", "password": "Chosen9876"})
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "planner@acme.example.com"

        response = client.post("/api/auth/admin-password-reset", json={
            "user_id": user_id, "current_password": "Chosen9876", "new_password": "Another555",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Password reset not required for this account"

    def test_reset_needs_temporary_password(self, client, admin, auth_headers):
        user_id = self.create_account(client, admin, auth_headers)

        response = client.post("/api/auth/admin-password-reset", json={
            "user_id": user_id, "new_password": "Chosen9876",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"

        response = client.post("/api/auth/admin-password-reset", json={
            "user_id": user_id, "current_password": "Guess1234", "new_password": "Chosen9876",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Temporary password is incorrect"

        response = client.post("/api/auth/login", json={"email": "planner@acme.example.com", "password": "Chosen9876"})
        assert response.status_code == 400
