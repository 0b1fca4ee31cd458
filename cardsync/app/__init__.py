"""Application layer: settings and the HTTP API.

Run the API with ``uvicorn cardsync.app.api:app``.
"""

from . import config

__all__ = ["config"]
