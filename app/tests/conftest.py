"""
Shared fixtures: in-memory SQLite database, API client and user factories.

Environment is configured before the app is imported so settings pick up the
test values.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256-signing"
os.environ["MESSAGE_REMINDER_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_JSON"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="shub-uploads-")
os.environ.pop("SENDGRID_API_KEY", None)

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import Base, get_db
from app.db import models  # noqa - register tables
from app.db.models import UserRole
from app.db.storage import Storage
from app.core.security import get_password_hash, create_user_token
from app.services.email_service import EmailService
from app.main import app

TEST_PASSWORD = "Passw0rd!"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def sent_emails():
    """Capture outbound email instead of calling SendGrid."""
    with patch.object(EmailService, "send_email", new=AsyncMock(return_value=True)) as mock_send:
        yield mock_send


@pytest.fixture
def client(session_factory, sent_emails):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Create a verified user directly in the database."""
    def _make_user(email: str, role: str = UserRole.CUSTOMER.value, company_id: int = None, **fields):
        fields.setdefault("name", email.split("@")[0].title())
        user = Storage(db_session).create_user(
            email=email,
            hashed_password=get_password_hash(TEST_PASSWORD),
            role=role,
            company_id=company_id,
            is_verified=True,
            is_admin=role == UserRole.ADMIN.value,
            **fields,
        )
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def password():
    """Plain-text password of users built by make_user."""
    return TEST_PASSWORD


@pytest.fixture
def auth_headers():
    """Bearer header for a persisted user."""
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_user_token(user)}"}
    return _headers


@pytest.fixture
def admin(make_user):
    return make_user("ops@stone-flake.com", UserRole.ADMIN.value, name="Ops Admin")


@pytest.fixture
def customer(make_user):
    return make_user("buyer@acme.example.com", UserRole.CUSTOMER.value, name="Acme Buyer")


@pytest.fixture
def supplier(make_user):
    return make_user("shop@machining.example.com", UserRole.SUPPLIER.value, name="Precision Machining")
