# src/parley/models/message.py
"""Models describing direct messages between users."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.db.session import Base
from parley.db.time import utcnow

from .user import User


class Message(Base):
    """Direct message between two users.

    Content is encrypted at rest with a key derived from the participant
    pair. ``deleted_for_sender`` and ``deleted_for_receiver`` are independent
    soft-delete markers; rows are never physically removed here.
    """

    __tablename__ = "message"
    __table_args__ = (
        Index("ix_message_pair_created", "sender_id", "receiver_id", "created_at"),
        Index("ix_message_receiver_read", "receiver_id", "read"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_account.id"), nullable=False)
    receiver_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_account.id"), nullable=False)

    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Encrypted payload bundle; all four columns are set together or not at all.
    encrypted_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    iv: Mapped[str | None] = mapped_column(String(32), nullable=True)
    auth_tag: Mapped[str | None] = mapped_column(String(32), nullable=True)
    algorithm: Mapped[str | None] = mapped_column(String(32), nullable=True)

    media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(16), nullable=True)

    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_for_sender: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_for_receiver: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reply_to_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("message.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    # Doubles as the read timestamp; every update touches it.
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    sender: Mapped[User] = relationship("User", foreign_keys=[sender_id], lazy="joined")
    receiver: Mapped[User] = relationship("User", foreign_keys=[receiver_id])
    reply_to: Mapped[Message | None] = relationship(
        "Message", remote_side=[id], foreign_keys=[reply_to_id]
    )

    @property
    def has_bundle(self) -> bool:
        """Return True when an encrypted payload bundle is attached."""
        return self.encrypted_content is not None

    @property
    def deleted_for_both(self) -> bool:
        """Return True once both participants have deleted the message."""
        return bool(self.deleted_for_sender and self.deleted_for_receiver)
