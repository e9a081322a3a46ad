"""GraphQL transport: WebSocket subscriptions and multipart file uploads."""

__version__ = "0.1.0"

from .client import GraphQLClient
from .config import ConfigLoadError, GraphQLClientConfig, load_config
from .errors import (
    FileUploadError,
    GraphQLClientError,
    GraphQLConnectionError,
    GraphQLError,
    GraphQLHandshakeError,
    GraphQLResponseError,
    GraphQLSubscriptionError,
    GraphQLTimeout,
)
from .files import (
    ExtractedFiles,
    FileLike,
    FileList,
    UploadFile,
    as_file_list,
    extract_files,
    files_length,
    has_files,
    is_file,
)
from .http import GraphQLHttpClient, GraphQLResponse
from .multipart import MultipartRequest, build_multipart_request, needs_multipart
from .protocol import GRAPHQL_TRANSPORT_WS, GRAPHQL_WS, ProtocolMessage, parse_message
from .session import ConnectionState, GraphQLSubscriptionClient, Unsubscribe
from .subscriptions import Subscription, SubscriptionRegistry
from .ws_client import GraphQLWsClient, GraphQLWsMessage, GraphQLWsMessageType

__all__ = [
    "GRAPHQL_TRANSPORT_WS",
    "GRAPHQL_WS",
    "ConfigLoadError",
    "ConnectionState",
    "ExtractedFiles",
    "FileLike",
    "FileList",
    "FileUploadError",
    "GraphQLClient",
    "GraphQLClientConfig",
    "GraphQLClientError",
    "GraphQLConnectionError",
    "GraphQLError",
    "GraphQLHandshakeError",
    "GraphQLHttpClient",
    "GraphQLResponse",
    "GraphQLResponseError",
    "GraphQLSubscriptionClient",
    "GraphQLSubscriptionError",
    "GraphQLTimeout",
    "GraphQLWsClient",
    "GraphQLWsMessage",
    "GraphQLWsMessageType",
    "MultipartRequest",
    "ProtocolMessage",
    "Subscription",
    "SubscriptionRegistry",
    "UploadFile",
    "Unsubscribe",
    "__version__",
    "as_file_list",
    "build_multipart_request",
    "extract_files",
    "files_length",
    "has_files",
    "is_file",
    "load_config",
    "needs_multipart",
    "parse_message",
]
