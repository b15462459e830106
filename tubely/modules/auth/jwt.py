"""JWT access token handling.

Tokens are HS256-signed with ``JWT_SECRET``; ``sub`` holds the user UUID.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from tubely.core.config import settings

ALGORITHM = "HS256"
TOKEN_ISSUER = "tubely-access"


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    iss: str


def create_access_token(
    user_id: uuid.UUID,
    expires_delta: timedelta = timedelta(hours=1),
    secret: Optional[str] = None,
) -> str:
    """Create a signed access token for ``user_id``."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + expires_delta,
        "iss": TOKEN_ISSUER,
    }
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=ALGORITHM)


def validate_token(token: str, secret: Optional[str] = None) -> Optional[TokenPayload]:
    """Decode and validate an access token.

    Returns:
        Optional[TokenPayload]: Payload if the token is valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            secret or settings.JWT_SECRET,
            algorithms=[ALGORITHM],
            issuer=TOKEN_ISSUER,
        )
        return TokenPayload(**payload)
    except (JWTError, ValidationError):
        return None


def get_user_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Extract user ID from a valid access token."""
    payload = validate_token(token)
    if payload is None:
        return None

    try:
        return uuid.UUID(payload.sub)
    except ValueError:
        return None


security = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> uuid.UUID:
    """Get the authenticated user ID from the bearer token.

    Raises:
        HTTPException: If the token is missing or invalid
    """
    user_id = get_user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Couldn't validate JWT",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
