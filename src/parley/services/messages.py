# src/parley/services/messages.py
"""Lifecycle of direct messages: send, list, edit, delete and read receipts."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from parley.core.errors import (
    AuthorizationError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from parley.core.settings import settings
from parley.db.time import as_utc, utcnow
from parley.models import Message, User
from parley.services.encryption import (
    EncryptedBundle,
    EncryptionService,
    bundle_from_columns,
    get_encryption_service,
)
from parley.services.media import MediaService, get_media_service

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "image"


class DeleteScope(str, enum.Enum):
    """Scope requested by the caller of a single-message delete."""

    SELF = "self"
    ALL = "all"


class DeleteTarget(enum.Enum):
    """Delete scope resolved against the actor's role in the message."""

    ALL = "all"
    SELF_AS_SENDER = "self_as_sender"
    SELF_AS_RECEIVER = "self_as_receiver"


@dataclass(frozen=True)
class MessageInfo:
    """Delivery and read details of a single message."""

    id: int
    sent: datetime
    delivered: datetime
    read: bool
    read_at: datetime | None
    sender_id: int
    sender_username: str | None


def parse_delete_scope(scope: DeleteScope | str) -> DeleteScope:
    """Coerce a raw scope value, rejecting anything but "self" and "all"."""
    try:
        return DeleteScope(scope)
    except ValueError as err:
        raise ValidationError(f"Invalid delete scope: {scope!r}") from err


def resolve_delete_target(
    message: Message,
    actor_id: int,
    scope: DeleteScope | str,
) -> DeleteTarget:
    """Resolve the requested scope into the flag(s) the actor may set.

    Raises:
        AuthorizationError: If the actor is not a participant, or asks to
            delete for all without being the sender.
    """
    requested = parse_delete_scope(scope)
    is_sender = message.sender_id == actor_id
    is_receiver = message.receiver_id == actor_id
    if not is_sender and not is_receiver:
        raise AuthorizationError("Not authorized to delete this message")
    if requested is DeleteScope.ALL:
        if not is_sender:
            raise AuthorizationError("Only the sender can delete for all")
        return DeleteTarget.ALL
    return DeleteTarget.SELF_AS_SENDER if is_sender else DeleteTarget.SELF_AS_RECEIVER


def _between(user_a: int, user_b: int) -> ColumnElement[bool]:
    """Filter matching messages in either direction between two users."""
    return or_(
        and_(Message.sender_id == user_a, Message.receiver_id == user_b),
        and_(Message.sender_id == user_b, Message.receiver_id == user_a),
    )


def _bundle_columns(bundle: EncryptedBundle) -> dict[str, str]:
    return {
        "encrypted_content": bundle.ciphertext,
        "iv": bundle.iv,
        "auth_tag": bundle.auth_tag,
        "algorithm": bundle.algorithm,
    }


class MessageService:
    """Message Lifecycle Manager.

    Mutations go through conditional ``UPDATE`` statements so each one is
    atomic for its row; no in-process locking is performed.

    Concurrent self-deletes from both participants may each see the other
    flag unset and skip media release, leaving that blob behind. Duplicate
    releases are no-ops.
    """

    def __init__(
        self,
        db: Session,
        *,
        encryption: EncryptionService | None = None,
        media: MediaService | None = None,
        clock: Callable[[], datetime] = utcnow,
        edit_window: timedelta | None = None,
        store_plaintext: bool | None = None,
    ) -> None:
        self.db = db
        self.encryption = encryption or get_encryption_service()
        self.media = media or get_media_service()
        self.clock = clock
        self.edit_window = (
            edit_window
            if edit_window is not None
            else timedelta(seconds=settings.message_edit_window_seconds)
        )
        self.store_plaintext = (
            settings.message_store_plaintext if store_plaintext is None else store_plaintext
        )

    # --- Reads ---------------------------------------------------------------------
    def _reload(self, message_id: int) -> Message:
        message = self.db.get(Message, message_id, populate_existing=True)
        if message is None:  # pragma: no cover - row vanished underneath us
            raise NotFoundError("Message not found")
        return message

    def message_text(self, message: Message) -> str | None:
        """Return the readable content of a message.

        Stored plaintext wins; otherwise the bundle is decrypted, degrading to
        a placeholder on failure. Media-only messages yield None.
        """
        if message.content is not None:
            return message.content
        if not message.has_bundle:
            return None
        bundle = bundle_from_columns(
            message.encrypted_content, message.iv, message.auth_tag, message.algorithm
        )
        if bundle is None:
            return None
        outcome = self.encryption.try_decrypt(bundle, message.sender_id, message.receiver_id)
        return outcome.text_or()

    def list_messages(
        self,
        viewer_id: int,
        other_user_id: int,
        include_replies: bool = False,
    ) -> list[Message]:
        """Return the visible messages between two users, oldest first.

        Messages the viewer deleted on their own side are excluded.
        """
        stmt = (
            select(Message)
            .where(
                or_(
                    and_(
                        Message.sender_id == viewer_id,
                        Message.receiver_id == other_user_id,
                        Message.deleted_for_sender.is_(False),
                    ),
                    and_(
                        Message.sender_id == other_user_id,
                        Message.receiver_id == viewer_id,
                        Message.deleted_for_receiver.is_(False),
                    ),
                )
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
            .execution_options(populate_existing=True)
        )
        if include_replies:
            stmt = stmt.options(joinedload(Message.reply_to).joinedload(Message.sender))
        return list(self.db.scalars(stmt).unique())

    def unread_count(self, viewer_id: int) -> int:
        """Count unread messages addressed to the viewer that they have not deleted."""
        count = self.db.scalar(
            select(func.count())
            .select_from(Message)
            .where(
                Message.receiver_id == viewer_id,
                Message.read.is_(False),
                Message.deleted_for_receiver.is_(False),
            )
        )
        return int(count or 0)

    def get_message_info(self, message_id: int, viewer_id: int) -> MessageInfo:
        """Return delivery details for a message the viewer takes part in.

        Delivery is modelled as instantaneous, and the last update time stands
        in for the read timestamp.
        """
        message = self.db.scalars(
            select(Message).where(
                Message.id == message_id,
                or_(Message.sender_id == viewer_id, Message.receiver_id == viewer_id),
            ).execution_options(populate_existing=True)
        ).first()
        if message is None:
            raise NotFoundError("Message not found")
        return MessageInfo(
            id=message.id,
            sent=message.created_at,
            delivered=message.created_at,
            read=message.read,
            read_at=message.updated_at if message.read else None,
            sender_id=message.sender_id,
            sender_username=message.sender.username if message.sender else None,
        )

    # --- Writes --------------------------------------------------------------------
    def send(
        self,
        sender_id: int,
        receiver_id: int,
        content: str | None = None,
        reply_to_id: int | None = None,
        media_url: str | None = None,
        media_type: str | None = None,
    ) -> Message:
        """Create a message carrying text, media or both.

        Raises:
            ValidationError: If neither content nor media is given, or the
                receiver does not exist.
        """
        if not content and not media_url:
            raise ValidationError("Receiver ID and either content or media are required")
        if self.db.get(User, receiver_id) is None:
            raise ValidationError("Receiver not found")

        message = Message(
            sender_id=sender_id,
            receiver_id=receiver_id,
            read=False,
            is_edited=False,
            deleted_for_sender=False,
            deleted_for_receiver=False,
            reply_to_id=reply_to_id,
        )
        if content:
            bundle = self.encryption.encrypt(content, sender_id, receiver_id)
            for column, value in _bundle_columns(bundle).items():
                setattr(message, column, value)
            if self.store_plaintext:
                message.content = content
        if media_url:
            message.media_url = media_url
            message.media_type = media_type or DEFAULT_MEDIA_TYPE

        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        logger.debug("Message %s sent from %s to %s", message.id, sender_id, receiver_id)
        return message

    def edit(self, message_id: int, editor_id: int, new_content: str) -> Message:
        """Replace the content of a message within the edit window.

        The new content is re-encrypted so the stored bundle always matches it.

        Raises:
            ValidationError: If the new content is empty.
            NotFoundError: If the message does not exist.
            AuthorizationError: If the editor is not the sender.
            ExpiredError: If the edit window has elapsed.
        """
        if not new_content:
            raise ValidationError("Content is required")

        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != editor_id:
            raise AuthorizationError("Not authorized to edit this message")

        now = self.clock()
        cutoff = now - self.edit_window
        if as_utc(message.created_at) < cutoff:
            raise ExpiredError(self._expired_detail())

        bundle = self.encryption.encrypt(new_content, message.sender_id, message.receiver_id)
        values: dict[str, object] = {
            **_bundle_columns(bundle),
            "content": new_content if self.store_plaintext else None,
            "is_edited": True,
            "updated_at": now,
        }
        # The window and ownership are re-checked by the row update itself.
        result = self.db.execute(
            update(Message)
            .where(
                Message.id == message_id,
                Message.sender_id == editor_id,
                Message.created_at >= cutoff,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise ExpiredError(self._expired_detail())
        self.db.commit()
        return self._reload(message_id)

    def _expired_detail(self) -> str:
        minutes = int(self.edit_window.total_seconds() // 60)
        return f"Message can only be edited within {minutes} minutes of sending"

    def delete(self, message_id: int, actor_id: int, scope: DeleteScope | str) -> None:
        """Soft-delete a message for the actor, or for both sides.

        Media is released exactly when the message becomes deleted for both
        participants.

        Raises:
            NotFoundError: If the message does not exist.
            AuthorizationError: If the actor may not delete with this scope.
            ValidationError: If the scope is unknown.
        """
        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        target = resolve_delete_target(message, actor_id, scope)

        stmt = update(Message).where(Message.id == message_id)
        if target is DeleteTarget.ALL:
            stmt = stmt.where(
                Message.sender_id == actor_id,
                or_(
                    Message.deleted_for_sender.is_(False),
                    Message.deleted_for_receiver.is_(False),
                ),
            ).values(deleted_for_sender=True, deleted_for_receiver=True)
        elif target is DeleteTarget.SELF_AS_SENDER:
            stmt = stmt.where(
                Message.sender_id == actor_id,
                Message.deleted_for_sender.is_(False),
            ).values(deleted_for_sender=True)
        else:
            stmt = stmt.where(
                Message.receiver_id == actor_id,
                Message.deleted_for_receiver.is_(False),
            ).values(deleted_for_receiver=True)

        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        self.db.commit()
        if result.rowcount == 0:
            # Already deleted on this side; the transition happened earlier.
            return

        if target is DeleteTarget.ALL:
            self._release_unreferenced(message.media_url)
            return
        current = self._reload(message_id)
        if current.deleted_for_both:
            self._release_unreferenced(current.media_url)

    def _release_unreferenced(self, media_url: str | None) -> None:
        """Release a blob unless a message still visible to someone points at it."""
        if not media_url:
            return
        still_used = self.db.scalar(
            select(func.count())
            .select_from(Message)
            .where(
                Message.media_url == media_url,
                or_(
                    Message.deleted_for_sender.is_(False),
                    Message.deleted_for_receiver.is_(False),
                ),
            )
        )
        if still_used:
            logger.info("Keeping media %s; %d message(s) still reference it", media_url, still_used)
            return
        self.media.release(media_url)

    def delete_conversation(self, viewer_id: int, other_user_id: int) -> int:
        """Delete every message between two users on the viewer's side.

        Returns:
            The number of media-bearing messages considered for release.
        """
        candidates = self.db.execute(
            select(
                Message.id,
                Message.media_url,
                Message.deleted_for_sender,
                Message.deleted_for_receiver,
            ).where(_between(viewer_id, other_user_id), Message.media_url.is_not(None))
        ).all()

        self.db.execute(
            update(Message)
            .where(
                Message.sender_id == viewer_id,
                Message.receiver_id == other_user_id,
                Message.deleted_for_sender.is_(False),
            )
            .values(deleted_for_sender=True)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            update(Message)
            .where(
                Message.sender_id == other_user_id,
                Message.receiver_id == viewer_id,
                Message.deleted_for_receiver.is_(False),
            )
            .values(deleted_for_receiver=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        pending = {
            row.id: row.media_url
            for row in candidates
            if not (row.deleted_for_sender and row.deleted_for_receiver)
        }
        if pending:
            converged = self.db.scalars(
                select(Message.id).where(
                    Message.id.in_(list(pending)),
                    Message.deleted_for_sender.is_(True),
                    Message.deleted_for_receiver.is_(True),
                )
            ).all()
            for url in {pending[message_id] for message_id in converged}:
                self._release_unreferenced(url)

        logger.info(
            "User %s cleared conversation with %s (%d media candidates)",
            viewer_id,
            other_user_id,
            len(candidates),
        )
        return len(candidates)

    def mark_read(self, viewer_id: int, message_ids: Sequence[int]) -> int:
        """Mark the viewer's unread incoming messages as read.

        Returns:
            How many messages actually transitioned to read.
        """
        if not message_ids:
            return 0
        result = self.db.execute(
            update(Message)
            .where(
                Message.id.in_(list(message_ids)),
                Message.receiver_id == viewer_id,
                Message.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return int(result.rowcount or 0)
