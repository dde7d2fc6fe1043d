"""Shared API dependencies for authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from parley.core.security import decode_access_token
from parley.db.session import get_db
from parley.models import User
from parley.services.encryption import EncryptionService, get_encryption_service
from parley.services.media import MediaService, get_media_service

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as err:
        raise _credentials_error() from err

    subject = payload.get("sub")
    if subject is None:
        raise _credentials_error()
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as err:
        raise _credentials_error() from err

    user = db.get(User, user_id)
    if user is None:
        raise _credentials_error("User not found")
    return user


def get_encryption_service_dep() -> EncryptionService:
    """Return the message encryption service."""
    return get_encryption_service()


def get_media_service_dep() -> MediaService:
    """Return the media blob service."""
    return get_media_service()


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
EncryptionServiceDep = Annotated[EncryptionService, Depends(get_encryption_service_dep)]
MediaServiceDep = Annotated[MediaService, Depends(get_media_service_dep)]
