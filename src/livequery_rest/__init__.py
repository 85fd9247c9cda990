"""livequery REST transport.

Live queries over a REST backend: an HTTP baseline pull per query, kept up
to date by change events pushed over a single shared WebSocket.

Components:
- RestTransporter: client entry point (live queries + CRUD)
- QueryTransport: one live query, merging baseline pulls and push events
- ConnectionManager: the shared push channel (reconnect, buffering, topics)
- TopicRegistry: reference-counted broadcast channels keyed by ref
- encode_query: query options to HTTP parameters
"""

from .client import RestClient
from .config import RestTransporterConfig, static_url
from .connection import ConnectionManager, TopicSubscription, TransportState
from .errors import EncodingError, LiveQueryError, NetworkError, RemoteError
from .filters import encode_filters, encode_query, encode_value
from .protocol import SocketEvent, SocketMessage
from .query import QueryTransport, normalize_response
from .topics import Topic, TopicRegistry
from .transporter import RestTransporter
from .types import (
    ChangeEvent,
    ChangeType,
    ConnectionState,
    FilterOperator,
    Paging,
    QueryData,
    QueryError,
    QueryOptions,
    QueryStreamItem,
)

__all__ = [
    # Entry point
    "RestTransporter",
    "RestTransporterConfig",
    "static_url",
    # Core
    "QueryTransport",
    "normalize_response",
    "ConnectionManager",
    "TopicSubscription",
    "TransportState",
    "Topic",
    "TopicRegistry",
    "RestClient",
    # Encoding
    "encode_query",
    "encode_filters",
    "encode_value",
    # Wire protocol
    "SocketEvent",
    "SocketMessage",
    # Types
    "ChangeEvent",
    "ChangeType",
    "ConnectionState",
    "FilterOperator",
    "Paging",
    "QueryData",
    "QueryError",
    "QueryOptions",
    "QueryStreamItem",
    # Errors
    "LiveQueryError",
    "RemoteError",
    "NetworkError",
    "EncodingError",
]
