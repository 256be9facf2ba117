"""Contact address normalization and conversation-key derivation.

The provider addresses the same contact with different suffixes
(5511999999999@s.whatsapp.net, 5511999999999@lid, 5511999999999@c.us) and
sometimes with a device part (5511999999999:12@s.whatsapp.net). Every variant
must map to one conversation key, otherwise one-to-one chats fragment.
"""

import re
from dataclasses import dataclass

from chatrelay.domain.errors import InvalidAddressError

CANONICAL_SUFFIX = "@s.whatsapp.net"
KNOWN_SUFFIXES: tuple[str, ...] = ("@s.whatsapp.net", "@lid", "@c.us")

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class ResolvedContact:
    """Normalized views of one contact address."""

    address: str
    conversation_key: str
    contact_number: str


def _digits(raw: str) -> str:
    local = raw.strip().split("@", 1)[0]
    local = local.split(":", 1)[0]  # device part
    return _NON_DIGITS.sub("", local)


def normalize_address(raw: str) -> str:
    """Return the canonical address `{digits}@s.whatsapp.net`.

    Raises:
        InvalidAddressError: If raw is empty or contains no digits.
    """
    if not raw or not raw.strip():
        raise InvalidAddressError("contact address is required")

    digits = _digits(raw)
    if not digits:
        raise InvalidAddressError("contact address has no digits")

    return f"{digits}{CANONICAL_SUFFIX}"


def strip_suffixes(address: str) -> str:
    """Remove every known suffix variant from an address."""
    result = address
    for suffix in KNOWN_SUFFIXES:
        result = result.replace(suffix, "")
    return result


def conversation_key(raw: str) -> str:
    """Deterministic conversation key for any address variant."""
    return strip_suffixes(normalize_address(raw))


def extract_phone(address: str) -> str:
    """Phone part of an address (everything before '@')."""
    return address.split("@", 1)[0]


def resolve_conversation(raw: str) -> ResolvedContact:
    """Normalize a raw address into address, conversation key and contact number."""
    address = normalize_address(raw)
    key = strip_suffixes(address)
    return ResolvedContact(
        address=address,
        conversation_key=key,
        contact_number=extract_phone(key),
    )
