"""
Bearer token helpers.

Tokens are issued by the identity service; this module only signs tokens for
tooling and tests and decodes them per request. The subject is the user's
email; role and division are always read from the users table.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ipcr_portal.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    to_encode.setdefault("type", "access")
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.token_algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Returns the claims, ``{"error": "TOKEN_EXPIRED"}`` for an expired token,
    or None when the token cannot be verified.
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
    except ExpiredSignatureError:
        return {"error": "TOKEN_EXPIRED"}
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None
