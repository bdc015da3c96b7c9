from typing import Optional
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from expenseflow.core.config import settings
from expenseflow.models.shared.enums import UserRole

def create_access_token(
    user_id: int,
    role: UserRole,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Issue an access token carrying the user id (`sub`) and role"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate access token"""
    try:
        # jose checks the signature and exp claim
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    # Check token type
    if payload.get("type") != "access":
        return None
    return payload
