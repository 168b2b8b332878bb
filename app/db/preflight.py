"""
Database preflight check to ensure connectivity before starting the application.
Prints troubleshooting steps when Postgres rejects the configured credentials.
"""
import sys
import time
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("db_preflight")


def _safe_url(db_url: str) -> str:
    """Drop credentials before logging."""
    return db_url.split("@")[-1] if "@" in db_url else db_url.split("://")[0]


def run_db_preflight(retries: int = 5, delay: int = 2) -> bool:
    """
    Connect and run SELECT 1, retrying while the database comes up.
    Exits the process when the database stays unreachable.
    """
    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    logger.info(f"Running DB preflight check against: {_safe_url(db_url)}")

    if db_url.startswith("sqlite"):
        engine = create_engine(db_url)
    else:
        engine = create_engine(db_url, connect_args={"connect_timeout": 5})

    try:
        for attempt in range(1, retries + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database connection successful.")
                return True
            except OperationalError as e:
                err_msg = str(e)

                if "password authentication failed" in err_msg.lower():
                    logger.error("=" * 60)
                    logger.error("FATAL: DATABASE AUTHENTICATION FAILED")
                    logger.error(f"User: {settings.POSTGRES_USER}  Database: {settings.POSTGRES_DB}")
                    logger.error("The POSTGRES_* settings do not match the credentials stored")
                    logger.error("in the existing data volume. Reset the volume in development")
                    logger.error("or update POSTGRES_PASSWORD to the stored password.")
                    logger.error("=" * 60)
                    sys.exit(1)

                if attempt < retries:
                    logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"CRITICAL: Could not connect to database after {retries} attempts.")
                    logger.error(f"Error: {err_msg}")
                    sys.exit(1)
    finally:
        engine.dispose()
    return False


if __name__ == "__main__":
    run_db_preflight()
