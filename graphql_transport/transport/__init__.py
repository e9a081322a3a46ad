"""Raw socket helpers for the GraphQL transport."""

from .ws import connect_websocket

__all__ = ["connect_websocket"]
