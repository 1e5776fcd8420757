"""
Request dependencies: caller identity and the evidence blob store.
"""
import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from ipcr_portal.core.permissions import Actor
from ipcr_portal.database import get_db
from ipcr_portal.models.user import User
from ipcr_portal.services import auth as auth_service
from ipcr_portal.services.storage import LocalBlobStore

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """
    Extracts and validates the current user from the JWT token.
    """
    payload = auth_service.decode_access_token(token)

    if payload is None:
        logger.warning("Authentication failed: Invalid token")
        raise _unauthorized("Could not validate credentials")

    if payload.get("error") == "TOKEN_EXPIRED":
        logger.info("Authentication failed: Token expired")
        raise _unauthorized("TOKEN_EXPIRED")

    if payload.get("type") != "access":
        logger.warning("Authentication failed: Invalid token type")
        raise _unauthorized("Invalid token type")

    email = payload.get("sub")
    if email is None:
        logger.warning("Authentication failed: Missing subject (email) in token")
        raise _unauthorized("Missing subject in token")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        logger.warning(f"Authentication failed: User {email} not found in database")
        raise _unauthorized("User not found")
    if not user.is_active:
        logger.warning(f"Authentication failed: User {email} is inactive")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive"
        )
    return user


def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


@lru_cache
def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()
