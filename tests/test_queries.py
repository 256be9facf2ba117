"""Tests for read-side use cases."""

from datetime import timedelta

import pytest

from chatrelay.domain.errors import InvalidRequestError, MessageNotFoundError
from chatrelay.domain.models import PROVIDER_MESSAGE_ID, Attachment, Message
from chatrelay.domain.queries import fetch_message_context, list_conversations, list_messages
from chatrelay.domain.send_message import SendMessageInput
from helpers import CONTACT_NUMBER, NUMBER_ID, TEST_WORKSPACE, raw, upsert_payload


def _save_messages(store, clock, count, conversation_id=CONTACT_NUMBER):
    with store.unit_of_work() as repos:
        for i in range(count):
            repos.messages.save(
                Message(
                    id=f"m-{i:04d}",
                    workspace_id=TEST_WORKSPACE,
                    conversation_id=conversation_id,
                    sender_id=CONTACT_NUMBER,
                    type="text",
                    content=str(i),
                    status="delivered",
                    created_at=clock() + timedelta(seconds=i),
                )
            )


class TestListMessages:
    def test_default_limit(self, store, clock):
        _save_messages(store, clock, 60)

        messages = list_messages(store.unit_of_work, TEST_WORKSPACE, CONTACT_NUMBER)

        assert len(messages) == 50
        assert messages[0].id == "m-0000"

    def test_limit_is_capped(self, store, clock):
        _save_messages(store, clock, 205)

        messages = list_messages(store.unit_of_work, TEST_WORKSPACE, CONTACT_NUMBER, limit=500)

        assert len(messages) == 200

    def test_conversation_id_is_normalized(self, store, clock):
        _save_messages(store, clock, 3)

        messages = list_messages(store.unit_of_work, TEST_WORKSPACE, "5511999999999@lid")

        assert [m.id for m in messages] == ["m-0000", "m-0001", "m-0002"]

    def test_since_filter(self, store, clock):
        _save_messages(store, clock, 5)

        messages = list_messages(
            store.unit_of_work,
            TEST_WORKSPACE,
            CONTACT_NUMBER,
            since=clock() + timedelta(seconds=2),
        )

        assert [m.id for m in messages] == ["m-0003", "m-0004"]

    def test_workspace_isolation(self, store, clock):
        _save_messages(store, clock, 2)

        assert list_messages(store.unit_of_work, "other-ws", CONTACT_NUMBER) == []

    def test_conversation_id_required(self, store):
        with pytest.raises(InvalidRequestError):
            list_messages(store.unit_of_work, TEST_WORKSPACE, "")


class TestListConversations:
    def test_most_recent_first(self, relay, store, clock):
        for jid, ext in (("5511111111111@lid", "A"), ("5522222222222@lid", "B")):
            payload = upsert_payload(ext, "hi", remote_jid=jid)
            relay.processor.ingest(raw(payload), payload, TEST_WORKSPACE, NUMBER_ID)
            clock.advance(60)

        conversations = list_conversations(store.unit_of_work, TEST_WORKSPACE)

        assert [c.id for c in conversations] == ["5522222222222", "5511111111111"]


class TestFetchMessageContext:
    def test_inbound_message(self, relay, store):
        payload = upsert_payload("3EB0AAA", "oi")
        relay.processor.ingest(raw(payload), payload, TEST_WORKSPACE, NUMBER_ID)

        context = fetch_message_context(store.unit_of_work, TEST_WORKSPACE, "evo-3EB0AAA")

        assert context.direction == "inbound"
        assert context.provider == "evolution"
        assert context.type == "text"
        assert context.status == "delivered"
        assert context.has_attachments is False
        assert context.is_reply is False
        assert context.to_dict()["conversation_id"] == CONTACT_NUMBER

    def test_outbound_message(self, relay, store):
        message = relay.send_message(
            SendMessageInput(
                workspace_id=TEST_WORKSPACE,
                conversation_id=CONTACT_NUMBER,
                type="text",
                content="olá",
                user_id="agent-7",
            )
        )

        context = fetch_message_context(
            store.unit_of_work, TEST_WORKSPACE, message.id, user_id="agent-7"
        )

        assert context.direction == "outbound"
        assert context.provider == "unknown"
        assert context.status == "pending"

    def test_file_is_reported_as_document(self, store, clock):
        with store.unit_of_work() as repos:
            repos.messages.save(
                Message(
                    id="evo-DOC",
                    workspace_id=TEST_WORKSPACE,
                    conversation_id=CONTACT_NUMBER,
                    sender_id="system",
                    type="file",
                    content="",
                    status="sent",
                    created_at=clock(),
                    attachments=(
                        Attachment(id="att-1", message_id="evo-DOC", type="file", url="/x"),
                    ),
                    metadata={PROVIDER_MESSAGE_ID: "DOC"},
                )
            )

        context = fetch_message_context(store.unit_of_work, TEST_WORKSPACE, "evo-DOC")

        assert context.type == "document"
        assert context.direction == "outbound"
        assert context.has_attachments is True

    def test_unknown_message(self, store):
        with pytest.raises(MessageNotFoundError):
            fetch_message_context(store.unit_of_work, TEST_WORKSPACE, "nope")

    def test_empty_message_id(self, store):
        with pytest.raises(MessageNotFoundError):
            fetch_message_context(store.unit_of_work, TEST_WORKSPACE, "")
