# src/parley/services/__init__.py
"""Business logic services for the Parley application."""

from .conversations import ConversationService, ConversationSummary
from .encryption import DecryptOutcome, EncryptedBundle, EncryptionService
from .media import FilesystemBlobStore, MediaService, StoredMedia
from .messages import DeleteScope, MessageInfo, MessageService

__all__ = [
    "ConversationService",
    "ConversationSummary",
    "DecryptOutcome",
    "EncryptedBundle",
    "EncryptionService",
    "FilesystemBlobStore",
    "MediaService",
    "StoredMedia",
    "DeleteScope",
    "MessageInfo",
    "MessageService",
]
