"""Protocol helpers for GraphQL-over-WebSocket frames.

Frames are JSON objects of the form ``{"id"?: str, "type": str, "payload"?: any}``.
The client speaks the legacy ``graphql-ws`` vocabulary (``start``/``stop``) and
understands the inbound names of ``graphql-transport-ws`` as well.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

GRAPHQL_WS: Final = "graphql-ws"
GRAPHQL_TRANSPORT_WS: Final = "graphql-transport-ws"

GQL_CONNECTION_INIT: Final = "connection_init"  # Client -> Server
GQL_CONNECTION_ACK: Final = "connection_ack"  # Server -> Client
GQL_CONNECTION_ERROR: Final = "connection_error"  # Server -> Client
GQL_CONNECTION_KEEP_ALIVE: Final = "ka"  # Server -> Client (graphql-ws)
GQL_PING: Final = "ping"  # Both directions
GQL_PONG: Final = "pong"  # Both directions
GQL_START: Final = "start"  # Client -> Server (graphql-ws)
GQL_SUBSCRIBE: Final = "subscribe"  # Client -> Server (graphql-transport-ws)
GQL_DATA: Final = "data"  # Server -> Client (graphql-ws)
GQL_NEXT: Final = "next"  # Server -> Client (graphql-transport-ws)
GQL_ERROR: Final = "error"  # Server -> Client
GQL_COMPLETE: Final = "complete"  # Server -> Client
GQL_STOP: Final = "stop"  # Client -> Server (graphql-ws)

DEFAULT_SUBSCRIPTION_ERROR: Final = "Subscription error"


@dataclass(frozen=True, slots=True)
class ProtocolMessage:
    """A single decoded protocol frame."""

    type: str
    id: str | None = None
    payload: Any = None


def build_message(
    msg_type: str,
    *,
    msg_id: str | None = None,
    payload: Any = None,
) -> dict[str, Any]:
    """Build a wire frame, omitting ``id`` and ``payload`` when not given."""
    frame: dict[str, Any] = {"type": msg_type}
    if msg_id is not None:
        frame["id"] = msg_id
    if payload is not None:
        frame["payload"] = payload
    return frame


def build_connection_init(params: Mapping[str, Any]) -> dict[str, Any]:
    """Construct the ``connection_init`` frame carrying connection params."""
    return build_message(GQL_CONNECTION_INIT, payload=dict(params))


def build_ping() -> dict[str, Any]:
    """Construct a keepalive ``ping`` frame."""
    return build_message(GQL_PING)


def build_pong() -> dict[str, Any]:
    """Construct a ``pong`` reply frame."""
    return build_message(GQL_PONG)


def build_start(
    msg_id: str,
    query: str,
    variables: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct a ``start`` frame for a subscription.

    The query text is forwarded verbatim.
    """
    return build_message(
        GQL_START,
        msg_id=msg_id,
        payload={"query": query, "variables": variables},
    )


def build_stop(msg_id: str) -> dict[str, Any]:
    """Construct a ``stop`` frame for a subscription."""
    return build_message(GQL_STOP, msg_id=msg_id)


def parse_message(frame: Mapping[str, Any]) -> ProtocolMessage:
    """Turn a decoded JSON frame into a ProtocolMessage.

    Raises ValueError if the frame has no string ``type``.
    """
    msg_type = frame.get("type")
    if not isinstance(msg_type, str):
        raise ValueError("Protocol frame requires a string type")

    msg_id = frame.get("id")
    if msg_id is not None and not isinstance(msg_id, str):
        msg_id = str(msg_id)

    return ProtocolMessage(type=msg_type, id=msg_id, payload=frame.get("payload"))


def error_message_from_payload(payload: Any) -> str:
    """Pick a human-readable message from an ``error`` frame payload.

    Servers send either a single error object or a list of GraphQL errors.
    """
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, Mapping):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return DEFAULT_SUBSCRIPTION_ERROR
