"""
Authentication and authorization dependencies.

Identity is owned by the external provider: the verified token's `sub`
and `role` claims are trusted as-is and never re-derived here.

Provides FastAPI dependencies for:
- Getting the current authenticated principal
- Role-based access control
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token

ROLE_ATHLETE = "athlete"
ROLE_COACH = "coach"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"

KNOWN_ROLES = (ROLE_ATHLETE, ROLE_COACH, ROLE_ADMIN, ROLE_SUPERADMIN)
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPERADMIN)

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Verified caller identity."""

    uid: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_coach(self) -> bool:
        return self.role == ROLE_COACH


def principal_from_token(token: Optional[str]) -> Principal:
    """Resolve a raw bearer token to a Principal, raising 401 on any defect."""
    if not token:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    uid = payload.get("sub")
    if not uid:
        raise UnauthorizedError("Invalid token payload")

    role = payload.get("role") or ROLE_ATHLETE
    if role not in KNOWN_ROLES:
        raise UnauthorizedError(f"Unknown role claim: {role}")

    return Principal(uid=str(uid), role=role)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """Get the current authenticated principal from the bearer token."""
    return principal_from_token(credentials.credentials if credentials else None)


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/claim")
        def claim(principal: Principal = Depends(require_role(["coach"]))):
            ...
    """
    def role_checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required roles: {allowed_roles}")
        return principal

    return role_checker


require_coach = require_role([ROLE_COACH])
require_athlete = require_role([ROLE_ATHLETE])
require_coach_or_admin = require_role([ROLE_COACH, *ADMIN_ROLES])
