"""SQLAlchemy models for the Parley application."""

from .message import Message
from .user import User

__all__ = ["Message", "User"]
