"""ASGI entrypoint: uvicorn chatrelay.api.app:app"""

from chatrelay.api.factory import create_app

app = create_app()
