"""Client error types for GraphQL transport interactions."""

from __future__ import annotations

from typing import Any


class GraphQLClientError(Exception):
    """Base error for GraphQL transport failures."""


class GraphQLTimeout(GraphQLClientError):
    """Timeout while communicating with the GraphQL server."""


class GraphQLConnectionError(GraphQLClientError):
    """Network connection to the GraphQL server failed."""


class GraphQLHandshakeError(GraphQLConnectionError):
    """WebSocket handshake failed."""


class GraphQLResponseError(GraphQLClientError):
    """Non-success HTTP response from the GraphQL endpoint."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class GraphQLError(GraphQLClientError):
    """GraphQL-level error reported in a response body."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class GraphQLSubscriptionError(GraphQLClientError):
    """Error message received for an active subscription."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class FileUploadError(GraphQLClientError):
    """A file leaf could not be read or encoded for upload."""
