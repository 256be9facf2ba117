"""Tests for the outbound send use case."""

from unittest.mock import MagicMock

import pytest

from chatrelay.domain.errors import InvalidAddressError, InvalidRequestError
from chatrelay.domain.send_message import AttachmentInput, SendMessage, SendMessageInput
from helpers import CONTACT_JID, CONTACT_NUMBER, NUMBER_ID, TEST_WORKSPACE, raw, upsert_payload


def _input(**overrides) -> SendMessageInput:
    values = {
        "workspace_id": TEST_WORKSPACE,
        "conversation_id": CONTACT_NUMBER,
        "type": "text",
        "content": "olá",
        "whatsapp_number_id": NUMBER_ID,
    }
    values.update(overrides)
    return SendMessageInput(**values)


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"conversation_id": ""},
            {"type": ""},
            {"content": None},
            {"type": "sticker"},
            {"type": "image"},
        ],
    )
    def test_invalid_requests(self, relay, store, overrides):
        with pytest.raises(InvalidRequestError):
            relay.send_message(_input(**overrides))
        assert store.state.messages == {}
        assert store.state.outbox == {}

    def test_digitless_conversation_id(self, relay):
        with pytest.raises(InvalidAddressError):
            relay.send_message(_input(conversation_id="abc@lid"))

    def test_reply_to_unknown_message(self, relay, store):
        with pytest.raises(InvalidRequestError):
            relay.send_message(_input(reply_to_message_id="evo-nope"))
        assert store.state.outbox == {}


class TestSendMessage:
    def test_persists_message_outbox_and_conversation(self, relay, store, clock):
        message = relay.send_message(_input(user_id="agent-7"))

        assert message.id.startswith("msg-")
        assert message.status == "pending"
        assert message.sender_id == "agent-7"
        assert message.conversation_id == CONTACT_NUMBER
        assert store.state.messages[(TEST_WORKSPACE, message.id)] == message

        (entry,) = store.state.outbox.values()
        assert entry.status == "pending"
        assert entry.attempts == 0
        assert entry.message_id == message.id
        assert entry.payload == {"type": "text", "to": CONTACT_JID, "text": "olá"}

        conversation = store.state.conversations[(TEST_WORKSPACE, CONTACT_NUMBER)]
        assert [p.id for p in conversation.participants] == ["agent-7", CONTACT_NUMBER]
        assert conversation.last_message.id == message.id
        assert conversation.whatsapp_number_id == NUMBER_ID

    def test_default_sender_is_me(self, relay):
        assert relay.send_message(_input()).sender_id == "me"

    def test_any_address_variant_reaches_same_conversation(self, relay, store):
        relay.send_message(_input(conversation_id="5511999999999@lid"))
        relay.send_message(_input(conversation_id="+55 11 99999-9999"))

        assert list(store.state.conversations) == [(TEST_WORKSPACE, CONTACT_NUMBER)]
        assert len(store.state.outbox) == 2

    def test_media_payload(self, relay, store):
        relay.send_message(
            _input(
                type="file",
                content="",
                attachments=(
                    AttachmentInput(
                        type="file",
                        url="https://files.example.com/a.pdf",
                        metadata={"filename": "a.pdf"},
                    ),
                ),
            )
        )

        (entry,) = store.state.outbox.values()
        assert entry.payload == {
            "type": "file",
            "to": CONTACT_JID,
            "mediaUrl": "https://files.example.com/a.pdf",
        }
        (message,) = store.state.messages.values()
        assert message.attachments[0].metadata == {"filename": "a.pdf"}

    def test_reply_carries_provider_id(self, relay, store):
        inbound = upsert_payload("3EB0AAA", "oi")
        relay.processor.ingest(raw(inbound), inbound, TEST_WORKSPACE, NUMBER_ID)

        message = relay.send_message(_input(reply_to_message_id="evo-3EB0AAA"))

        assert message.reply_to_message_id == "evo-3EB0AAA"
        entry = next(e for e in store.state.outbox.values() if e.message_id == message.id)
        assert entry.payload["replyMessageId"] == "3EB0AAA"

    def test_reply_to_other_conversation_is_rejected(self, relay):
        inbound = upsert_payload("3EB0AAA", "oi", remote_jid="5511888888888@s.whatsapp.net")
        relay.processor.ingest(raw(inbound), inbound, TEST_WORKSPACE, NUMBER_ID)

        with pytest.raises(InvalidRequestError):
            relay.send_message(_input(reply_to_message_id="evo-3EB0AAA"))

    def test_worker_kick_is_recorded(self, relay):
        relay.send_message(_input())

        (task,) = relay.tasks_client.get_recorded_tasks()
        assert task["url_path"] == "/tasks/outbox/process"
        assert task["payload"] == {"limit": 10}
        assert task["task_id"].startswith("outbox:")

    def test_trigger_failure_does_not_fail_send(self, store, clock):
        trigger = MagicMock(side_effect=RuntimeError("queue down"))
        send = SendMessage(store.unit_of_work, on_enqueued=trigger, clock=clock)

        message = send(_input())

        trigger.assert_called_once()
        assert (TEST_WORKSPACE, message.id) in store.state.messages
        assert len(store.state.outbox) == 1

    def test_failed_write_leaves_nothing_behind(self, store, clock, monkeypatch):
        from chatrelay.infra.repositories.memory import InMemoryConversationRepository

        monkeypatch.setattr(
            InMemoryConversationRepository,
            "save",
            MagicMock(side_effect=RuntimeError("disk full")),
        )
        send = SendMessage(store.unit_of_work, clock=clock)

        with pytest.raises(RuntimeError):
            send(_input())

        assert store.state.messages == {}
        assert store.state.outbox == {}
