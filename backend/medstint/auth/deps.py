"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_principal  → decode JWT, return Principal (zero DB hits)
  require_role(...)      → restrict to specific roles (from the token claim)
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medstint.auth.jwt import decode_token
from medstint.onboarding.types import Principal, Role

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Decode the bearer token and build the Principal from its claims."""
    payload = decode_token(credentials.credentials) if credentials else {}
    principal_id: str | None = payload.get("sub")
    if not principal_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Principal(
        id=principal_id,
        email=payload.get("email"),
        role=payload.get("role"),
        school_id=payload.get("school_id"),
        program_id=payload.get("program_id"),
    )


def require_role(*roles: Role):
    """Dependency factory: restrict to one or more roles.

    Usage:
        @router.get("/admin-only")
        async def admin_view(principal: Principal = Depends(require_role(Role.PLATFORM_ADMIN))):
            ...
    """
    allowed = {r.value for r in roles}

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return principal

    return _check
