"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_kwargs(url: str) -> dict:
    """Pool options for server databases; SQLite gets a thread-shared connection."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and run startup tasks.

    Schema is managed by Alembic migrations (`alembic upgrade head`).

    Startup order:
    1. Run preflight check (validates DB connectivity)
    2. Verify schema exists, auto-creating it only when DEBUG=true
    3. Bootstrap admin if ADMIN_BOOTSTRAP_* env vars are set
    """
    from sqlalchemy import inspect

    from app.db.preflight import run_db_preflight
    run_db_preflight()

    # Import models to register them on the metadata
    from app.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['companies', 'users', 'rfqs']

    missing = [t for t in required_tables if t not in existing_tables]
    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run 'alembic upgrade head'.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: auto-creating tables (not for production)")
            Base.metadata.create_all(bind=engine)
        else:
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    bootstrap_admin()


def bootstrap_admin():
    """
    Bootstrap the initial admin user from environment variables.

    Only runs if ADMIN_BOOTSTRAP_EMAIL and ADMIN_BOOTSTRAP_PASSWORD are set and
    no admin account exists yet. Idempotent.
    """
    from app.db.models import User, UserRole
    from app.db.storage import Storage
    from app.core.security import get_password_hash

    email = settings.ADMIN_BOOTSTRAP_EMAIL
    password = settings.ADMIN_BOOTSTRAP_PASSWORD

    if not email or not password:
        logger.info("Admin bootstrap: ADMIN_BOOTSTRAP_EMAIL/PASSWORD not set. Skipping.")
        return

    if len(password) < 10:
        logger.warning("ADMIN_BOOTSTRAP_PASSWORD must be at least 10 characters. Skipping bootstrap.")
        return

    db = SessionLocal()
    try:
        existing_admin = db.query(User).filter(User.is_admin.is_(True)).first()
        if existing_admin:
            logger.info("Admin bootstrap: an admin already exists. Skipping bootstrap.")
            return

        Storage(db).create_user(
            email=email,
            hashed_password=get_password_hash(password),
            name="Administrator",
            role=UserRole.ADMIN.value,
            is_admin=True,
            is_verified=True,
        )
        db.commit()
        logger.info(f"Bootstrap admin created: {email}")
    except Exception:
        db.rollback()
        logger.exception("Admin bootstrap failed")
    finally:
        db.close()
