"""Tests for Evolution webhook payload decoding."""

import pytest

from chatrelay.domain.errors import InvalidPayloadError
from chatrelay.whatsapp.events import (
    MessageUpsert,
    OtherEvent,
    StatusUpdate,
    decode_event,
    event_timestamp,
    external_message_id,
    instance_name,
    to_data_url,
)
from helpers import CONTACT_JID, status_payload, upsert_payload


class TestEnvelopeFields:
    def test_instance_name_variants(self):
        assert instance_name({"instance": "line-1"}) == "line-1"
        assert instance_name({"instanceName": "line-2"}) == "line-2"
        assert instance_name({"instance": {"instanceName": "line-3"}}) == "line-3"
        assert instance_name({"instance": "  "}) is None
        assert instance_name({}) is None

    def test_external_id_from_key_or_key_id(self):
        assert external_message_id(upsert_payload("ABC")) == "ABC"
        assert external_message_id(status_payload("XYZ", 3)) == "XYZ"
        assert external_message_id({"event": "connection.update", "data": {}}) is None

    def test_timestamp_sources(self):
        assert event_timestamp({"data": {"messageTimestamp": 1700000000}}) == 1700000000
        assert event_timestamp({"data": {"messageTimestamp": "1700000000"}}) == 1700000000
        assert event_timestamp({"data": {"messageTimestamp": {"low": 1700000000, "high": 0}}}) == (
            1700000000
        )
        assert event_timestamp({"data": {}, "timestamp": 1700000000123}) == 1700000000
        assert event_timestamp({"data": {}}) is None
        assert event_timestamp({"data": {"messageTimestamp": "soon"}}) is None


class TestDecodeUpsert:
    def test_plain_text(self):
        event = decode_event(upsert_payload("ABC", "oi", timestamp=1700000000))

        assert isinstance(event, MessageUpsert)
        assert event.external_id == "ABC"
        assert event.remote_jid == CONTACT_JID
        assert event.from_me is False
        assert event.timestamp == 1700000000
        assert event.type == "text"
        assert event.content == "oi"
        assert event.media is None

    def test_extended_text(self):
        payload = upsert_payload(message={"extendedTextMessage": {"text": "hello there"}})

        event = decode_event(payload)

        assert event.type == "text"
        assert event.content == "hello there"

    def test_image_with_inline_base64(self):
        payload = upsert_payload(
            message={
                "imageMessage": {
                    "mimetype": "image/jpeg",
                    "caption": "look",
                    "base64": "AAAA",
                    "url": "https://mmg.whatsapp.net/x",
                    "jpegThumbnail": "TTTT",
                    "fileLength": 1234,
                }
            }
        )

        event = decode_event(payload)

        assert event.type == "image"
        assert event.content == "look"
        assert event.media.kind == "image"
        assert event.media.id_suffix == "img"
        assert event.media.base64 == "AAAA"
        assert event.media.thumbnail_base64 == "TTTT"
        assert event.media.size == 1234

    def test_audio_caption_is_dropped(self):
        payload = upsert_payload(
            message={"audioMessage": {"mimetype": "audio/ogg", "caption": "x", "seconds": 7}}
        )

        event = decode_event(payload)

        assert event.type == "audio"
        assert event.content == ""
        assert event.media.duration == 7

    def test_document_maps_to_file(self):
        payload = upsert_payload(
            message={"documentMessage": {"mimetype": "application/pdf", "fileName": "a.pdf"}}
        )

        event = decode_event(payload)

        assert event.type == "file"
        assert event.media.id_suffix == "doc"
        assert event.media.filename == "a.pdf"

    def test_flattened_payload(self):
        payload = {
            "event": "messages.upsert",
            "instance": "line-1",
            "key": {"remoteJid": CONTACT_JID, "fromMe": "true", "id": "FLAT1"},
            "message": {"conversation": "flat"},
        }

        event = decode_event(payload)

        assert event.external_id == "FLAT1"
        assert event.from_me is True
        assert event.content == "flat"

    def test_missing_key_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            decode_event({"event": "messages.upsert", "data": {"message": {}}})

    def test_missing_remote_jid_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            decode_event({"event": "messages.upsert", "data": {"key": {"id": "A"}}})


class TestDecodeStatus:
    def test_flat_status(self):
        event = decode_event(status_payload("ABC", "READ"))

        assert event == StatusUpdate(external_id="ABC", raw_status="READ")

    def test_nested_update_status(self):
        payload = {
            "event": "messages.update",
            "data": {"key": {"id": "ABC"}, "update": {"status": 3}},
        }

        event = decode_event(payload)

        assert event == StatusUpdate(external_id="ABC", raw_status=3)

    def test_status_without_status_is_invalid(self):
        with pytest.raises(InvalidPayloadError):
            decode_event({"event": "messages.update", "data": {"keyId": "ABC"}})


class TestDecodeOther:
    def test_other_event(self):
        assert decode_event({"event": "connection.update", "data": {}}) == OtherEvent(
            event_type="connection.update"
        )

    def test_missing_event_type(self):
        with pytest.raises(InvalidPayloadError):
            decode_event({"data": {}})


class TestToDataUrl:
    def test_wraps_base64(self):
        assert to_data_url("image/png", "AAAA") == "data:image/png;base64,AAAA"

    def test_default_mimetype(self):
        assert to_data_url(None, "AAAA") == "data:application/octet-stream;base64,AAAA"

    def test_existing_data_url_is_kept(self):
        assert to_data_url("image/png", "data:image/gif;base64,R0") == "data:image/gif;base64,R0"
