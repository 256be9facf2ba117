"""Domain error taxonomy.

Each error carries a stable machine code. Callers map errors to outcomes:
InvalidPayloadError is never retried, DuplicateMessageError is a successful
no-op, MessageNotFoundError is only safe on the status-update path.
"""


class DomainError(Exception):
    """Base class for chat relay domain errors."""

    code = "DOMAIN_ERROR"
    default_message = "domain error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidPayloadError(DomainError):
    """Inbound provider event is malformed or incomplete."""

    code = "INVALID_PAYLOAD"
    default_message = "invalid payload"


class InvalidRequestError(DomainError):
    """Outbound send request is malformed (caller's fault)."""

    code = "INVALID_REQUEST"
    default_message = "invalid request"


class InvalidAddressError(InvalidRequestError):
    """Contact address is empty or carries no digits."""

    code = "INVALID_ADDRESS"
    default_message = "invalid contact address"


class DuplicateMessageError(DomainError):
    """Message with the same external id already exists."""

    code = "DUPLICATE_MESSAGE"
    default_message = "duplicate message"


class MessageNotFoundError(DomainError):
    code = "MESSAGE_NOT_FOUND"
    default_message = "message not found"


class ConversationNotFoundError(DomainError):
    code = "CONVERSATION_NOT_FOUND"
    default_message = "conversation not found"
