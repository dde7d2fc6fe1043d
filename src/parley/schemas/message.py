# src/parley/schemas/message.py
"""Direct message-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .user import UserSummary


class MessageSend(BaseModel):
    """Schema for sending a new direct message."""

    receiver_id: int | None = Field(None, description="Identifier of the recipient")
    content: str | None = Field(None, description="Plaintext body; encrypted before storage")
    reply_to_id: int | None = Field(None, description="Message this one replies to")
    media_url: str | None = Field(None, description="URL returned by the media upload endpoint")
    media_type: Literal["image", "video"] | None = Field(
        None,
        description="Kind of attached media; defaults to image when a URL is given",
    )


class MessageEdit(BaseModel):
    """Schema for replacing the content of a sent message."""

    content: str = Field(..., description="New plaintext body")


class MarkReadRequest(BaseModel):
    """Identifiers of incoming messages to mark as read."""

    message_ids: list[int] = Field(default_factory=list)


class ConversationCreate(BaseModel):
    """Request to open a conversation with another user."""

    user_id: int = Field(..., description="Identifier of the other participant")


class ReplyPreview(BaseModel):
    """Abbreviated view of the message being replied to."""

    id: int
    content: str | None
    sender: UserSummary | None


class MessageResponse(BaseModel):
    """Schema for direct message information returned by the API.

    The encrypted bundle never leaves the server; ``content`` is always the
    readable text, or the placeholder when it cannot be recovered.
    """

    id: int
    sender_id: int
    receiver_id: int
    content: str | None
    media_url: str | None
    media_type: str | None
    read: bool
    is_edited: bool
    reply_to_id: int | None
    created_at: datetime
    updated_at: datetime
    sender: UserSummary | None = None
    reply_to: ReplyPreview | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationSummaryResponse(BaseModel):
    """One entry of the caller's conversation list."""

    other_user_id: int
    other_username: str | None
    other_user_image: str | None
    last_message: str
    last_message_time: datetime | None
    unread_count: int

    model_config = ConfigDict(from_attributes=True)


class MessageInfoResponse(BaseModel):
    """Delivery and read details of a message."""

    id: int
    sent: datetime
    delivered: datetime
    read: bool
    read_at: datetime | None
    sender_id: int
    sender_username: str | None

    model_config = ConfigDict(from_attributes=True)


class MediaUploadResponse(BaseModel):
    """Location of a stored media upload."""

    url: str
    type: str
    filename: str
    original_name: str | None

    model_config = ConfigDict(from_attributes=True)


class UnreadCountResponse(BaseModel):
    count: int


class MarkReadResponse(BaseModel):
    updated_count: int


class DeleteConversationResponse(BaseModel):
    message: str
    count: int
