# src/parley/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .message import (
    ConversationCreate,
    ConversationSummaryResponse,
    DeleteConversationResponse,
    MarkReadRequest,
    MarkReadResponse,
    MediaUploadResponse,
    MessageEdit,
    MessageInfoResponse,
    MessageResponse,
    MessageSend,
    ReplyPreview,
    UnreadCountResponse,
)
from .user import UserSummary

__all__ = [
    "ConversationCreate", "ConversationSummaryResponse",
    "DeleteConversationResponse",
    "MarkReadRequest", "MarkReadResponse",
    "MediaUploadResponse",
    "MessageEdit", "MessageInfoResponse", "MessageResponse", "MessageSend",
    "ReplyPreview", "UnreadCountResponse",
    "UserSummary",
]
