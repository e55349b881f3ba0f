"""HTTP facade."""

from .app import NOT_CONNECTED_MESSAGE, create_app

__all__ = ["NOT_CONNECTED_MESSAGE", "create_app"]
