"""
Tests for tokens, one-time codes and log redaction.
"""
import pytest
from fastapi import HTTPException
from jose import jwt

from app.core.config import settings
from app.core.logging import scrub, scrub_details
from app.core.security import (
    create_access_token, create_user_token, decode_token,
    generate_numeric_code, get_password_hash, get_role_value, verify_password,
)
from app.db.models import UserRole


class TestCodesAndPasswords:

    def test_numeric_code_is_six_digits(self):
        for _ in range(50):
            code = generate_numeric_code()
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    def test_password_round_trip(self):
        hashed = get_password_hash("Secret123")
        assert hashed != "Secret123"
        assert verify_password("Secret123", hashed)
        assert not verify_password("Secret124", hashed)

    def test_role_value_accepts_enum_or_string(self):
        assert get_role_value(UserRole.SUPPLIER) == "supplier"
        assert get_role_value("admin") == "admin"


class TestTokens:

    def test_user_token_claims(self, customer):
        payload = decode_token(create_user_token(customer))
        assert payload["sub"] == str(customer.id)
        assert payload["role"] == "customer"
        assert payload["is_admin"] is False

    def test_tampered_token_rejected(self):
        token = jwt.encode({"sub": "1"}, "some-other-key", algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.status_code == 401

    def test_non_numeric_subject_rejected(self, client):
        token = create_access_token({"sub": "not-a-number"})
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestLogRedaction:

    def test_key_value_pairs(self):
        line = scrub("login failed password=hunter2 verification_code: 123456")
        assert "hunter2" not in line
        assert "123456" not in line

    def test_bearer_and_sendgrid_keys(self):
        line = scrub("Authorization header Bearer eyJabc.def.ghi sent with SG.abc123.def456")
        assert "eyJabc" not in line
        assert "SG.abc123" not in line

    def test_nested_details(self):
        details = {"email": "a@b.example.com", "payload": [{"password": "x", "code": "999999"}]}
        assert scrub_details(details) == {
            "email": "a@b.example.com",
            "payload": [{"password": "***REDACTED***", "code": "***REDACTED***"}],
        }
