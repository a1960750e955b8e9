from typing import Iterable
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.jwt_auth import jwt_manager
from app.core.principal import Principal, RoleType
from app.core.exceptions import AuthenticationError, AuthorizationError

security = HTTPBearer(
    scheme_name="JWT Token",
    description="Access token issued by the identity service",
    auto_error=False,
)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Dependency: authenticated caller"""
    if credentials is None or not credentials.credentials.strip():
        raise AuthenticationError("Authentication data is required")

    return jwt_manager.principal_from_token(credentials.credentials)


def require_roles(allowed_roles: Iterable[RoleType]):
    """
    Dependency factory restricting a route to some roles.

    Usage:
    @router.post("/classes")
    async def create(principal: Principal = Depends(require_staff)):
        ...
    """
    allowed = tuple(allowed_roles)

    async def role_dependency(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role not in allowed:
            raise AuthorizationError(
                f"Access denied. Required roles: {[r.value for r in allowed]}",
                {"role": principal.role.value},
            )
        return principal

    return role_dependency


require_admin = require_roles([RoleType.admin])
require_staff = require_roles([RoleType.admin, RoleType.trainer])
