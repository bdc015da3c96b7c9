from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from expenseflow.core.database import get_async_session
from expenseflow.auth.jwt_handler import decode_access_token
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import UserRole
from expenseflow.services.auth.user_service import UserService
import logging

security = HTTPBearer()
logger = logging.getLogger(__name__)

def _unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_async_session)
) -> User:
    """Get current authenticated user"""
    # Decode token
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()

    # Get user ID from token
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized()

    # Get user from database
    user = await UserService(session).get_user(user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")

    # Add request info to context
    request.state.current_user_id = user.id
    return user

def require_roles(*roles: UserRole):
    """
    Dependency returning the current user when their role is one of `roles`

    Examples:
        require_roles(UserRole.ADMIN)
        require_roles(UserRole.MANAGER, UserRole.ADMIN)
    """
    async def role_dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            logger.warning(
                f"User {current_user.id} ({current_user.role.value}) denied; "
                f"requires one of {[r.value for r in roles]}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user

    return role_dependency
