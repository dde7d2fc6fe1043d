# tests/services/test_conversations.py
"""Tests for the conversation aggregator."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from parley.core.errors import NotFoundError
from parley.services.conversations import ConversationService
from parley.services.encryption import PLACEHOLDER_TEXT, DecryptOutcome, EncryptionService
from parley.services.messages import MessageService

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def conversations(db_session: Session, encryption) -> ConversationService:
    return ConversationService(db_session, encryption=encryption, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_lists_conversations_most_recent_first(
    conversations: ConversationService, make_message, alice, bob, carol
) -> None:
    make_message(alice, bob, "old news", created_at=NOW - timedelta(hours=2))
    make_message(carol, alice, "hey alice", created_at=NOW - timedelta(minutes=30))
    make_message(bob, alice, "latest from bob", created_at=NOW - timedelta(minutes=5))

    summaries = await conversations.list_conversations(alice.id)

    assert [s.other_user_id for s in summaries] == [bob.id, carol.id]
    assert summaries[0].last_message == "latest from bob"
    assert summaries[0].other_username == "bob"
    assert summaries[1].last_message == "hey alice"


@pytest.mark.asyncio
async def test_last_message_is_decrypted_from_bundle(
    conversations: ConversationService, make_message, alice, bob
) -> None:
    make_message(bob, alice, "only ciphertext", store_plaintext=False)

    [summary] = await conversations.list_conversations(alice.id)

    assert summary.last_message == "only ciphertext"
    assert summary.other_user_image is None


@pytest.mark.asyncio
async def test_unread_count_is_per_correspondent(
    conversations: ConversationService, make_message, alice, bob, carol
) -> None:
    make_message(bob, alice, "1", created_at=NOW - timedelta(minutes=3))
    make_message(bob, alice, "2", created_at=NOW - timedelta(minutes=2))
    make_message(bob, alice, "3", created_at=NOW - timedelta(minutes=1), read=True)
    make_message(alice, bob, "reply", created_at=NOW)
    make_message(carol, alice, "c", created_at=NOW - timedelta(hours=1), read=True)

    summaries = {s.other_user_id: s for s in await conversations.list_conversations(alice.id)}

    assert summaries[bob.id].unread_count == 2
    assert summaries[bob.id].last_message == "reply"
    assert summaries[carol.id].unread_count == 0

    bob_view = await conversations.list_conversations(bob.id)
    assert bob_view[0].other_username == "alice"
    assert bob_view[0].other_user_image == "/avatars/alice.png"
    assert bob_view[0].unread_count == 1


@pytest.mark.asyncio
async def test_deleted_messages_still_surface_conversation(
    conversations: ConversationService,
    db_session: Session,
    encryption,
    media_service,
    make_message,
    alice,
    bob,
) -> None:
    message = make_message(alice, bob, "gone")
    MessageService(db_session, encryption=encryption, media=media_service).delete(
        message.id, alice.id, "all"
    )

    [summary] = await conversations.list_conversations(alice.id)

    assert summary.other_user_id == bob.id
    assert summary.last_message == "gone"


@pytest.mark.asyncio
async def test_media_only_last_message_is_empty(
    conversations: ConversationService, make_message, alice, bob
) -> None:
    make_message(alice, bob, None, media_url="/uploads/media/x.png")

    [summary] = await conversations.list_conversations(alice.id)

    assert summary.last_message == ""


@pytest.mark.asyncio
async def test_corrupted_bundle_yields_placeholder(
    conversations: ConversationService, db_session: Session, make_message, alice, bob, carol
) -> None:
    broken = make_message(bob, alice, "tampered", store_plaintext=False)
    broken.encrypted_content = "AAAA"
    db_session.commit()
    make_message(carol, alice, "fine", created_at=NOW - timedelta(days=1))

    summaries = {s.other_user_id: s for s in await conversations.list_conversations(alice.id)}

    assert summaries[bob.id].last_message == PLACEHOLDER_TEXT
    assert summaries[carol.id].last_message == "fine"


@pytest.mark.asyncio
async def test_unexpected_decrypt_failure_is_isolated(
    db_session: Session, make_message, mocker, alice, bob, carol
) -> None:
    encryption = EncryptionService("test-message-encryption-key")
    bob_id = bob.id
    make_message(bob, alice, "from bob", created_at=NOW - timedelta(minutes=1))
    make_message(carol, alice, "from carol", created_at=NOW - timedelta(minutes=2))

    def _flaky(bundle, user_a, user_b):
        if bob_id in (user_a, user_b):
            raise RuntimeError("boom")
        return DecryptOutcome(plaintext="from carol")

    mocker.patch.object(encryption, "try_decrypt", side_effect=_flaky)
    service = ConversationService(db_session, encryption=encryption)

    summaries = await service.list_conversations(alice.id)

    assert [s.last_message for s in summaries] == [PLACEHOLDER_TEXT, "from carol"]


@pytest.mark.asyncio
async def test_no_conversations(conversations: ConversationService, alice) -> None:
    assert await conversations.list_conversations(alice.id) == []


def test_placeholder_for_new_conversation(conversations: ConversationService, alice, carol) -> None:
    summary = conversations.create_conversation_placeholder(alice.id, carol.id)

    assert summary.other_user_id == carol.id
    assert summary.other_username == "carol"
    assert summary.last_message == ""
    assert summary.last_message_time == NOW
    assert summary.unread_count == 0


def test_placeholder_is_idempotent_and_creates_nothing(
    conversations: ConversationService, alice, carol
) -> None:
    first = conversations.create_conversation_placeholder(alice.id, carol.id)
    second = conversations.create_conversation_placeholder(alice.id, carol.id)

    assert first == second
    assert conversations.correspondent_ids(alice.id) == []


def test_placeholder_for_existing_conversation(
    conversations: ConversationService, make_message, alice, bob
) -> None:
    make_message(bob, alice, "already talking", created_at=NOW - timedelta(minutes=1))

    summary = conversations.create_conversation_placeholder(alice.id, bob.id)

    assert summary.last_message == "already talking"
    assert summary.unread_count == 1


def test_placeholder_for_unknown_user(conversations: ConversationService, alice) -> None:
    with pytest.raises(NotFoundError, match="User not found"):
        conversations.create_conversation_placeholder(alice.id, 404404)


@pytest.mark.asyncio
async def test_send_edit_read_and_self_delete_flow(
    db_session: Session, encryption, media_service, blob_store, mocker, alice, bob
) -> None:
    messages = MessageService(db_session, encryption=encryption, media=media_service)
    conversations = ConversationService(db_session, encryption=encryption)
    alice_id, bob_id = alice.id, bob.id
    release = mocker.spy(media_service, "release")

    sent = messages.send(alice_id, bob_id, content="hi")
    [summary] = await conversations.list_conversations(bob_id)
    assert summary.other_user_id == alice_id
    assert summary.last_message == "hi"
    assert summary.unread_count == 1

    edited = messages.edit(sent.id, alice_id, "hello")
    assert edited.is_edited is True
    [summary] = await conversations.list_conversations(bob_id)
    assert summary.last_message == "hello"
    [seen_by_bob] = messages.list_messages(bob_id, alice_id)
    assert messages.message_text(seen_by_bob) == "hello"

    assert messages.mark_read(bob_id, [sent.id]) == 1
    assert messages.unread_count(bob_id) == 0
    [summary] = await conversations.list_conversations(bob_id)
    assert summary.unread_count == 0

    messages.delete(sent.id, alice_id, "self")
    assert messages.list_messages(alice_id, bob_id) == []
    assert [m.id for m in messages.list_messages(bob_id, alice_id)] == [sent.id]
    release.assert_not_called()
    assert not blob_store.blobs
