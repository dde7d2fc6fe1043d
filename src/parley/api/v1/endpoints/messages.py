# src/parley/api/v1/endpoints/messages.py
"""Direct message endpoints for the Parley API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, Query, UploadFile, status

from parley.core.errors import ValidationError
from parley.models import Message
from parley.schemas import (
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
    UserSummary,
)
from parley.services.conversations import ConversationService
from parley.services.messages import DeleteScope, MessageService

from ..dependencies import (
    CurrentUserDep,
    EncryptionServiceDep,
    MediaServiceDep,
    SessionDep,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _serialize_message(
    message: Message,
    service: MessageService,
    include_replies: bool = False,
) -> MessageResponse:
    """Build the API payload for a message, resolving its readable content."""
    reply: ReplyPreview | None = None
    if include_replies and message.reply_to is not None:
        target = message.reply_to
        reply = ReplyPreview(
            id=target.id,
            content=service.message_text(target),
            sender=UserSummary.model_validate(target.sender) if target.sender else None,
        )
    return MessageResponse(
        id=message.id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=service.message_text(message),
        media_url=message.media_url,
        media_type=message.media_type,
        read=message.read,
        is_edited=message.is_edited,
        reply_to_id=message.reply_to_id,
        created_at=message.created_at,
        updated_at=message.updated_at,
        sender=UserSummary.model_validate(message.sender) if message.sender else None,
        reply_to=reply,
    )


@router.get("/conversations", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
) -> list[ConversationSummaryResponse]:
    """List the caller's conversations, most recent first."""
    service = ConversationService(db, encryption=encryption)
    summaries = await service.list_conversations(current_user.id)
    return [ConversationSummaryResponse.model_validate(summary) for summary in summaries]


@router.post("/conversations", response_model=ConversationSummaryResponse)
async def create_conversation(
    payload: ConversationCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
) -> ConversationSummaryResponse:
    """Open a conversation with another user without sending anything."""
    service = ConversationService(db, encryption=encryption)
    summary = service.create_conversation_placeholder(current_user.id, payload.user_id)
    return ConversationSummaryResponse.model_validate(summary)


@router.get("/conversation/{user_id}", response_model=list[MessageResponse])
async def get_conversation(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
    include_replies: bool = Query(False),
) -> list[MessageResponse]:
    """Get the messages exchanged with another user, oldest first."""
    service = MessageService(db, encryption=encryption, media=media)
    messages = service.list_messages(current_user.id, user_id, include_replies=include_replies)
    return [_serialize_message(message, service, include_replies) for message in messages]


@router.delete("/conversation/{user_id}/all", response_model=DeleteConversationResponse)
async def delete_conversation(
    user_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> DeleteConversationResponse:
    """Delete the whole conversation with another user on the caller's side."""
    service = MessageService(db, encryption=encryption, media=media)
    count = service.delete_conversation(current_user.id, user_id)
    return DeleteConversationResponse(message="Conversation deleted", count=count)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> UnreadCountResponse:
    """Count unread messages addressed to the caller."""
    service = MessageService(db, encryption=encryption, media=media)
    return UnreadCountResponse(count=service.unread_count(current_user.id))


@router.post("/upload-media", response_model=MediaUploadResponse)
async def upload_media(
    current_user: CurrentUserDep,
    media_service: MediaServiceDep,
    media: UploadFile | None = File(None),
) -> MediaUploadResponse:
    """Store an image or video to be attached to a later message."""
    if media is None:
        raise ValidationError("No file uploaded")
    data = await media.read(media_service.max_bytes + 1)
    stored = media_service.store(
        data,
        media.content_type or "application/octet-stream",
        original_name=media.filename,
    )
    logger.debug("User %s uploaded %s", current_user.id, stored.filename)
    return MediaUploadResponse.model_validate(stored)


@router.post("/send", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def send_message(
    payload: MessageSend,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> MessageResponse:
    """Send a direct message with text, media or both."""
    if payload.receiver_id is None:
        raise ValidationError("Receiver ID and either content or media are required")
    service = MessageService(db, encryption=encryption, media=media)
    message = service.send(
        current_user.id,
        payload.receiver_id,
        content=payload.content,
        reply_to_id=payload.reply_to_id,
        media_url=payload.media_url,
        media_type=payload.media_type,
    )
    return _serialize_message(message, service)


@router.post("/read", response_model=MarkReadResponse)
async def mark_messages_read(
    payload: MarkReadRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> MarkReadResponse:
    """Mark incoming messages as read."""
    service = MessageService(db, encryption=encryption, media=media)
    return MarkReadResponse(updated_count=service.mark_read(current_user.id, payload.message_ids))


@router.put("/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: int,
    payload: MessageEdit,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> MessageResponse:
    """Edit a message the caller sent within the edit window."""
    service = MessageService(db, encryption=encryption, media=media)
    message = service.edit(message_id, current_user.id, payload.content)
    return _serialize_message(message, service)


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
    delete_for: str = Query(DeleteScope.SELF.value),
) -> dict[str, str]:
    """Delete a message for the caller, or for both sides when the caller sent it."""
    service = MessageService(db, encryption=encryption, media=media)
    service.delete(message_id, current_user.id, delete_for)
    return {"message": "Message deleted"}


@router.get("/{message_id}/info", response_model=MessageInfoResponse)
async def get_message_info(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    encryption: EncryptionServiceDep,
    media: MediaServiceDep,
) -> MessageInfoResponse:
    """Get delivery and read details of a message."""
    service = MessageService(db, encryption=encryption, media=media)
    return MessageInfoResponse.model_validate(service.get_message_info(message_id, current_user.id))
