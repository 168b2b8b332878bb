"""
Role-Based Access Control (RBAC) dependencies.

Every portal user has exactly one role (customer, supplier or admin). Admin
rights are also granted by the legacy ``is_admin`` flag, so an admin account
registered under the customer role still passes admin checks.
"""
from enum import Enum
from fastapi import HTTPException, status, Depends
from sqlalchemy.orm import Session

from app.core.security import get_current_user_id, get_role_value
from app.db.session import get_db
from app.db.models import User


class Role(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


def is_admin_user(user: User) -> bool:
    """Admin flag or admin role."""
    return bool(user.is_admin) or get_role_value(user.role) == Role.ADMIN.value


def has_role(user: User, role: Role) -> bool:
    """Check if a user satisfies the required role."""
    if role == Role.ADMIN:
        return is_admin_user(user)
    return get_role_value(user.role) == role.value


async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    """Load the authenticated user row."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


class RBACChecker:
    """Dependency for checking role-based access."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(self, user: User = Depends(get_current_user)) -> User:
        if not has_role(user, self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{self.required_role.value.capitalize()} access required",
            )
        return user


# Convenience dependencies for common role checks
require_customer = RBACChecker(Role.CUSTOMER)
require_supplier = RBACChecker(Role.SUPPLIER)
require_admin = RBACChecker(Role.ADMIN)
