"""FastAPI dependencies for bearer-token authentication."""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.errors import AppError, to_http_exception
from app.users.schemas import UserRole

from .service import AuthService, TokenClaims

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Validate the ``Authorization: Bearer`` header."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "Missing or invalid authorization header"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return auth.validate_token(credentials.credentials)
    except AppError as e:
        raise to_http_exception(e)


def require_roles(*roles: UserRole):
    """Dependency factory allowing only the given roles."""
    allowed = frozenset(roles)

    async def role_checker(current: TokenClaims = Depends(get_current_user)) -> TokenClaims:
        if current.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "FORBIDDEN", "message": "Insufficient permissions"},
            )
        return current

    return role_checker


require_admin = require_roles(UserRole.ADMIN)
