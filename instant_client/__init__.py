"""Python client for InstantDB real-time queries and transactions.

Async usage::

    from instant_client import connect, tx, new_id

    async with connect("your-app-id") as db:
        db.subscribe_query({"goals": {}}, lambda result: print(result.data))
        await db.transact(tx.goals[new_id()].update({"title": "Ship v1"}))

Typed queries::

    @dataclass
    class Goal:
        __namespace__ = "goals"
        id: str
        title: str

    async for result in db.query(Goal).where(lambda g: g.title.like("Ship%")).values():
        print(result.data)

Sync usage::

    from instant_client import SyncInstantClient

    db = SyncInstantClient("your-app-id")
    db.connect()
    unsubscribe = db.subscribe({"goals": {}}, print)
    db.close()

Optional extras::

    pip install instant-client[fast]   # orjson codec
"""

from ._version import __version__
from .auth import AuthProvider, FileTokenStore, MemoryTokenStore
from .client import InstantClient
from .errors import (
    DecodingError,
    EncodingError,
    InstantConnectionError,
    InstantError,
    InstantTimeoutError,
    InvalidQueryError,
    NotAuthenticatedError,
    NotConnectedError,
    ServerError,
)
from .pagination import Cursor, PageInfo
from .query import Predicate, TypedQuery
from .registry import Subscription
from .results import QueryResult, ResultStatus, TypedResult
from .stream import QueryStream
from .sync_client import SyncInstantClient
from .transaction import TransactionChunk, lookup, new_id, tx
from .types import (
    Attribute,
    AuthInfo,
    ConnectionState,
    ConnectionStats,
    ReconnectConfig,
    ReconnectMode,
    User,
)


def connect(app_id: str, **kwargs) -> InstantClient:
    """Create an Instant client.

    Use as an async context manager.  Keyword arguments are forwarded to
    :class:`InstantClient` -- common ones: ``base_url``, ``auth``,
    ``reconnect``, ``ready_timeout``.

    Example::

        async with connect("your-app-id") as db:
            ...
    """
    return InstantClient(app_id, **kwargs)


__all__ = [
    "__version__",
    "connect",
    # Client
    "InstantClient",
    "SyncInstantClient",
    # Queries
    "TypedQuery",
    "Predicate",
    "QueryResult",
    "TypedResult",
    "ResultStatus",
    "QueryStream",
    "Subscription",
    "Cursor",
    "PageInfo",
    # Transactions
    "tx",
    "TransactionChunk",
    "new_id",
    "lookup",
    # Auth
    "AuthProvider",
    "MemoryTokenStore",
    "FileTokenStore",
    # Types
    "Attribute",
    "AuthInfo",
    "User",
    "ConnectionState",
    "ConnectionStats",
    "ReconnectConfig",
    "ReconnectMode",
    # Errors
    "InstantError",
    "InstantConnectionError",
    "NotConnectedError",
    "NotAuthenticatedError",
    "InvalidQueryError",
    "DecodingError",
    "EncodingError",
    "InstantTimeoutError",
    "ServerError",
]
