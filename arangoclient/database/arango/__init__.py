"""
ArangoDB Cluster Interface

Provides a connection pool spanning every coordinator with load balancing,
failover and retries, lazy batch cursors and stream transaction handles.
"""

# load_balancing is imported before connection; config depends on it.
from .load_balancing import LoadBalancer, LoadBalancingState, LoadBalancingStrategy
from .connection import ClientState, Connection, ProcessedResponse, RequestOptions
from .cursor import BatchCursor, BatchCursorItemsView, Cursor
from .database import Database
from .errors import (
    ArangoError,
    ArangoHttpError,
    ConfigurationError,
    ConflictError,
    CursorNotFoundError,
    FetchFailedError,
    HttpError,
    NetworkError,
    NotLeaderError,
    PropagationTimeoutError,
    RequestAbortedError,
    ResponseTimeoutError,
    TransactionNotFoundError,
    TransactionStateError,
)
from .hosts import Host, HostPool, normalize_url
from .queue_time import QueueTimeSample, QueueTimeTracker
from .retry import Fatal, Retryable, RetryPolicy, Success
from .transaction import Transaction, TransactionStatus

__all__ = [
    "ArangoError",
    "ArangoHttpError",
    "BatchCursor",
    "BatchCursorItemsView",
    "ClientState",
    "ConfigurationError",
    "ConflictError",
    "Connection",
    "Cursor",
    "CursorNotFoundError",
    "Database",
    "Fatal",
    "FetchFailedError",
    "Host",
    "HostPool",
    "HttpError",
    "LoadBalancer",
    "LoadBalancingState",
    "LoadBalancingStrategy",
    "NetworkError",
    "NotLeaderError",
    "ProcessedResponse",
    "PropagationTimeoutError",
    "QueueTimeSample",
    "QueueTimeTracker",
    "RequestAbortedError",
    "RequestOptions",
    "ResponseTimeoutError",
    "RetryPolicy",
    "Retryable",
    "Success",
    "Transaction",
    "TransactionNotFoundError",
    "TransactionStateError",
    "TransactionStatus",
    "normalize_url",
]
