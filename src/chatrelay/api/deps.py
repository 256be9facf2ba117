"""FastAPI dependencies."""

from fastapi import Request

from chatrelay.composition import ChatRelay


def get_relay(request: Request) -> ChatRelay:
    """The ChatRelay built by create_app() for this application."""
    return request.app.state.relay
