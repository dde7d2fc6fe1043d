# src/parley/services/conversations.py
"""Conversation listing built from the message table on every request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from parley.core.errors import NotFoundError
from parley.db.time import as_utc, utcnow
from parley.models import Message, User
from parley.services.encryption import (
    DecryptOutcome,
    EncryptedBundle,
    EncryptionService,
    bundle_from_columns,
    get_encryption_service,
)

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ConversationSummary:
    """One row of a user's conversation list."""

    other_user_id: int
    other_username: str | None
    other_user_image: str | None
    last_message: str
    last_message_time: datetime | None
    unread_count: int


@dataclass(frozen=True)
class _PendingSummary:
    other_user_id: int
    other_username: str | None
    other_user_image: str | None
    bundle: EncryptedBundle | None
    last_message_time: datetime | None
    unread_count: int

    def finish(self, outcome: DecryptOutcome) -> ConversationSummary:
        return ConversationSummary(
            other_user_id=self.other_user_id,
            other_username=self.other_username,
            other_user_image=self.other_user_image,
            last_message=outcome.text_or(),
            last_message_time=self.last_message_time,
            unread_count=self.unread_count,
        )


class ConversationService:
    """Conversation Aggregator."""

    def __init__(
        self,
        db: Session,
        *,
        encryption: EncryptionService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.encryption = encryption or get_encryption_service()
        self.clock = clock

    def correspondent_ids(self, viewer_id: int) -> list[int]:
        """Return everyone who has exchanged a message with the viewer.

        Delete flags are ignored; they only hide messages, not conversations.
        """
        other = case(
            (Message.sender_id == viewer_id, Message.receiver_id),
            else_=Message.sender_id,
        )
        rows = self.db.scalars(
            select(other)
            .where(or_(Message.sender_id == viewer_id, Message.receiver_id == viewer_id))
            .distinct()
        )
        return [int(row) for row in rows]

    def _last_message(self, viewer_id: int, other_user_id: int) -> Message | None:
        return self.db.scalars(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == viewer_id, Message.receiver_id == other_user_id),
                    and_(Message.sender_id == other_user_id, Message.receiver_id == viewer_id),
                )
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        ).first()

    def _unread_from(self, viewer_id: int, other_user_id: int) -> int:
        count = self.db.scalar(
            select(func.count())
            .select_from(Message)
            .where(
                Message.receiver_id == viewer_id,
                Message.sender_id == other_user_id,
                Message.read.is_(False),
            )
        )
        return int(count or 0)

    def _collect(self, viewer_id: int, other_user_id: int) -> _PendingSummary:
        user = self.db.get(User, other_user_id)
        last = self._last_message(viewer_id, other_user_id)
        if last is None:
            logger.warning(
                "No last message resolvable between %s and %s", viewer_id, other_user_id
            )
        return _PendingSummary(
            other_user_id=other_user_id,
            other_username=user.username if user else None,
            other_user_image=user.user_image if user else None,
            bundle=(
                bundle_from_columns(last.encrypted_content, last.iv, last.auth_tag, last.algorithm)
                if last is not None and last.has_bundle
                else None
            ),
            last_message_time=last.created_at if last is not None else None,
            unread_count=self._unread_from(viewer_id, other_user_id),
        )

    async def _decrypt_isolated(self, pending: _PendingSummary, viewer_id: int) -> DecryptOutcome:
        try:
            return await asyncio.to_thread(
                self.encryption.try_decrypt, pending.bundle, viewer_id, pending.other_user_id
            )
        except Exception as err:
            logger.error(
                "Unexpected failure decrypting conversation %s/%s",
                viewer_id,
                pending.other_user_id,
                exc_info=True,
            )
            return DecryptOutcome(error=str(err) or type(err).__name__)

    async def list_conversations(self, viewer_id: int) -> list[ConversationSummary]:
        """Summarize every conversation of the viewer, most recent first.

        The last message of each conversation is decrypted concurrently; a
        failure on one conversation yields its placeholder without affecting
        the others.
        """
        pending = [self._collect(viewer_id, other) for other in self.correspondent_ids(viewer_id)]
        outcomes = await asyncio.gather(
            *(self._decrypt_isolated(item, viewer_id) for item in pending)
        )
        summaries = [item.finish(outcome) for item, outcome in zip(pending, outcomes)]
        summaries.sort(
            key=lambda s: (
                s.last_message_time is not None,
                as_utc(s.last_message_time) if s.last_message_time else _OLDEST,
            ),
            reverse=True,
        )
        return summaries

    def create_conversation_placeholder(
        self,
        viewer_id: int,
        other_user_id: int,
    ) -> ConversationSummary:
        """Return the summary for opening a conversation with another user.

        No record is created. When the pair has never exchanged messages the
        summary is empty with zero unread messages.

        Raises:
            NotFoundError: If the other user does not exist.
        """
        if self.db.get(User, other_user_id) is None:
            raise NotFoundError("User not found")
        pending = self._collect(viewer_id, other_user_id)
        if pending.last_message_time is None:
            return ConversationSummary(
                other_user_id=pending.other_user_id,
                other_username=pending.other_username,
                other_user_image=pending.other_user_image,
                last_message="",
                last_message_time=self.clock(),
                unread_count=0,
            )
        outcome = self.encryption.try_decrypt(pending.bundle, viewer_id, other_user_id)
        return pending.finish(outcome)
