"""Error taxonomy shared by the messaging services.

Services raise these exceptions; the API layer maps them onto HTTP responses
through ``ParleyError.status_code``.
"""

from __future__ import annotations

from fastapi import status


class ParleyError(Exception):
    """Base class for domain errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(ParleyError):
    """Bad or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(ParleyError):
    """The actor lacks permission for the target resource."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ParleyError):
    """A referenced entity does not exist (or is not visible to the actor)."""

    status_code = status.HTTP_404_NOT_FOUND


class ExpiredError(ParleyError):
    """A time-boxed operation was attempted after its window elapsed."""

    status_code = status.HTTP_403_FORBIDDEN


class CryptoError(ParleyError):
    """Key derivation failed or an integrity check did not pass."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "ParleyError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ExpiredError",
    "CryptoError",
]
