"""Tests for contact address normalization and conversation keys."""

import pytest

from chatrelay.domain.errors import InvalidAddressError
from chatrelay.domain.identity import (
    conversation_key,
    extract_phone,
    normalize_address,
    resolve_conversation,
    strip_suffixes,
)

VARIANTS = [
    "5511999999999@s.whatsapp.net",
    "5511999999999@lid",
    "5511999999999@c.us",
    "5511999999999:12@s.whatsapp.net",
    "5511999999999",
    "+55 (11) 99999-9999",
    "  5511999999999@lid  ",
]


class TestNormalizeAddress:
    @pytest.mark.parametrize("raw", VARIANTS)
    def test_variants_map_to_canonical_address(self, raw):
        assert normalize_address(raw) == "5511999999999@s.whatsapp.net"

    @pytest.mark.parametrize("raw", ["", "   ", "abc@lid", "@s.whatsapp.net"])
    def test_rejects_empty_or_digitless(self, raw):
        with pytest.raises(InvalidAddressError):
            normalize_address(raw)

    def test_invalid_address_is_an_invalid_request(self):
        from chatrelay.domain.errors import InvalidRequestError

        with pytest.raises(InvalidRequestError):
            normalize_address("")


class TestConversationKey:
    def test_suffix_independent(self):
        keys = {conversation_key(raw) for raw in VARIANTS}
        assert keys == {"5511999999999"}

    def test_strip_suffixes_removes_every_variant(self):
        assert strip_suffixes("123@s.whatsapp.net") == "123"
        assert strip_suffixes("123@lid") == "123"
        assert strip_suffixes("123@c.us") == "123"

    def test_extract_phone(self):
        assert extract_phone("5511999999999@s.whatsapp.net") == "5511999999999"
        assert extract_phone("5511999999999") == "5511999999999"


class TestResolveConversation:
    def test_resolved_views(self):
        contact = resolve_conversation("5511999999999@lid")

        assert contact.address == "5511999999999@s.whatsapp.net"
        assert contact.conversation_key == "5511999999999"
        assert contact.contact_number == "5511999999999"
