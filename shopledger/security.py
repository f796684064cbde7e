"""JWT helpers. Tokens are issued by the surrounding platform; this service only verifies them."""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from shopledger.config import settings
from shopledger.logger import get_logger

logger = get_logger(__name__)


def create_access_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token for ``user_id``."""
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode: dict[str, Any] = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.debug("JWT token expired")
        return None
    except jwt.PyJWTError as exc:
        logger.warning(
            "JWT decode failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return None
