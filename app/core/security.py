"""
Identity resolution for analytics callers.

Tokens are issued by the marketplace auth service; this service only
verifies them and reads the subject and role claims.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from uuid import UUID
import enum
import logging
import time

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.config import settings
from app.core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# Anonymous callers are allowed, so a missing token is not an error here
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_PREFIX}/auth/login",
    auto_error=False
)


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SELLER = "seller"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: opaque id + role"""
    user_id: UUID
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token (used by tooling and tests)
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({
        "exp": expire,
        "type": "access",
        "iat": int(time.time()),
    })
    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )


def decode_token(token: str) -> Principal:
    """
    Verify a JWT access token and build the caller principal
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise AuthenticationError("Could not validate credentials")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type. Expected access")

    subject = payload.get("sub")
    if subject is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = UUID(str(subject))
        role = UserRole(payload.get("role", UserRole.USER.value))
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    return Principal(user_id=user_id, role=role)


async def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme)
) -> Optional[Principal]:
    """
    Resolve the caller, or None for anonymous requests.
    A present but invalid token is rejected rather than treated as anonymous.
    """
    if not token:
        return None
    return decode_token(token)


async def require_admin(
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Principal:
    """
    Require admin role for endpoint
    """
    if principal is None:
        raise AuthenticationError("Authentication required")
    if not principal.is_admin:
        raise AuthorizationError("Not enough permissions")
    return principal
