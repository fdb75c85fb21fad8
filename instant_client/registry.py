# =============================================================================
# Instant Python Client -- Subscription Registry
# =============================================================================
#
# One record per distinct query (by fingerprint), shared by every callback
# that subscribed to a structurally equal payload.  The record keeps the
# correlation id used for its add-query and the last result delivered, so
# late subscribers can be answered without another round trip.
#
# All methods are called from the client's event loop; there is no locking.
# =============================================================================

from __future__ import annotations

import hashlib

from dataclasses import dataclass, field
from uuid import uuid4
from typing import Any, Callable, Iterable, Mapping

from ._logging import logger
from .errors import DecodingError, InvalidQueryError
from .normalizer import NormalizedData, extract_all_page_info, normalize
from .pagination import PageInfo
from .protocol import canonical_json
from .constants import KEY_INSTAQL_QUERY, KEY_INSTAQL_RESULT
from .results import QueryResult
from .types import Attribute

ResultCallback = Callable[[QueryResult], Any]


def fingerprint(payload: Any) -> str:
    """Stable key for a query payload.

    Structurally equal payloads hash the same regardless of key order.

    Raises:
        InvalidQueryError: If *payload* is not a non-empty mapping of JSON
            values.
    """
    if not isinstance(payload, Mapping):
        raise InvalidQueryError(
            f"query must be a mapping, got {type(payload).__name__}"
        )
    if not payload:
        raise InvalidQueryError("query must name at least one namespace")
    try:
        text = canonical_json(payload)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"query is not JSON-serializable: {exc}") from exc
    return hashlib.sha256(text.encode()).hexdigest()


class _Listener:
    __slots__ = ("callback", "active")

    def __init__(self, callback: ResultCallback) -> None:
        self.callback = callback
        self.active = True


@dataclass
class SubscriptionRecord:
    """Server-side registration shared by all callbacks of one query.

    Attributes:
        fingerprint: Key of the record in the registry.
        query: The payload sent as ``q``.
        event_id: Correlation id of the record's add-query; reused when the
            query is re-issued after a reconnect.
        listeners: Active callbacks in registration order.
        last_result: Most recent delivery (Loading until the first answer).
    """

    fingerprint: str
    query: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    listeners: list[_Listener] = field(default_factory=list)
    last_result: QueryResult = field(default_factory=QueryResult.loading)

    @property
    def callback_count(self) -> int:
        return len(self.listeners)


class Subscription:
    """Handle returned by :meth:`SubscriptionRegistry.subscribe`.

    Call it (or :meth:`cancel`) to unsubscribe.  Repeated calls are no-ops.
    """

    __slots__ = ("_registry", "_fingerprint", "_listener")

    def __init__(
        self, registry: SubscriptionRegistry, fp: str, listener: _Listener
    ) -> None:
        self._registry = registry
        self._fingerprint = fp
        self._listener = listener

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def active(self) -> bool:
        return self._listener.active

    def cancel(self) -> None:
        if not self._listener.active:
            return
        self._registry._remove_listener(self._fingerprint, self._listener)

    def __call__(self) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"<Subscription {self._fingerprint[:12]} {state}>"


class SubscriptionRegistry:
    """Deduplicates query subscriptions and fans results out to callbacks.

    Args:
        on_add_query: Called with a new record; expected to send add-query.
        on_remove_query: Called with a record whose last callback left;
            expected to send remove-query (fire-and-forget).
    """

    def __init__(
        self,
        *,
        on_add_query: Callable[[SubscriptionRecord], Any] | None = None,
        on_remove_query: Callable[[SubscriptionRecord], Any] | None = None,
    ) -> None:
        self._records: dict[str, SubscriptionRecord] = {}
        self._on_add_query = on_add_query
        self._on_remove_query = on_remove_query

    # -- Subscribe / Unsubscribe ----------------------------------------------

    def subscribe(
        self, payload: Mapping[str, Any], callback: ResultCallback
    ) -> Subscription:
        """Register *callback* for *payload*.

        The callback is invoked synchronously before this returns: with
        Loading for a new query, or with the record's current result when
        the query is already live.
        """
        fp = fingerprint(payload)
        listener = _Listener(callback)
        record = self._records.get(fp)

        if record is None:
            record = SubscriptionRecord(fingerprint=fp, query=dict(payload))
            record.listeners.append(listener)
            self._records[fp] = record
            logger.debug("New subscription %s (event %s)", fp[:12], record.event_id)
            if self._on_add_query:
                self._on_add_query(record)
            self._invoke(listener, QueryResult.loading())
        else:
            record.listeners.append(listener)
            logger.debug(
                "Joined subscription %s (%d callbacks)", fp[:12], len(record.listeners)
            )
            self._invoke(listener, record.last_result)

        return Subscription(self, fp, listener)

    def _remove_listener(self, fp: str, listener: _Listener) -> None:
        listener.active = False
        record = self._records.get(fp)
        if record is None:
            return
        try:
            record.listeners.remove(listener)
        except ValueError:
            return
        if record.listeners:
            return

        del self._records[fp]
        logger.debug("Removed subscription %s", fp[:12])
        if self._on_remove_query:
            self._on_remove_query(record)

    # -- Inbound results ------------------------------------------------------

    def handle_result(
        self,
        event_id: str | None,
        data: NormalizedData,
        page_info: dict[str, PageInfo] | None = None,
    ) -> bool:
        """Deliver a Success to the record that sent *event_id*.

        Returns False when no live record matches.
        """
        record = self.find_by_event_id(event_id)
        if record is None:
            logger.debug("Result for unknown event %s ignored", event_id)
            return False
        self._deliver(record, QueryResult.success(data, page_info))
        return True

    def handle_refresh(
        self,
        computations: Iterable[Any],
        attributes: Iterable[Attribute] | Mapping[str, Attribute],
    ) -> int:
        """Deliver each pushed computation to its matching record.

        Computations for queries this client does not hold are skipped.
        Returns the number of records notified.
        """
        if not isinstance(attributes, Mapping):
            attributes = {attr.id: attr for attr in attributes}

        notified = 0
        for computation in computations or ():
            if not isinstance(computation, Mapping):
                continue
            query = computation.get(KEY_INSTAQL_QUERY)
            try:
                fp = fingerprint(query)
            except InvalidQueryError:
                logger.debug("Refresh with unusable query skipped: %r", query)
                continue
            record = self._records.get(fp)
            if record is None:
                continue

            blocks = computation.get(KEY_INSTAQL_RESULT) or []
            try:
                result = QueryResult.success(
                    normalize(blocks, attributes), extract_all_page_info(blocks)
                )
            except DecodingError as exc:
                logger.warning("Refresh for %s undecodable: %s", fp[:12], exc)
                result = QueryResult.failure(exc)
            self._deliver(record, result)
            notified += 1
        return notified

    def handle_error(self, event_id: str | None, error: Exception) -> bool:
        """Deliver a Failure to the record that sent *event_id*."""
        record = self.find_by_event_id(event_id)
        if record is None:
            return False
        logger.warning("Query %s failed: %s", record.fingerprint[:12], error)
        self._deliver(record, QueryResult.failure(error))
        return True

    def _deliver(self, record: SubscriptionRecord, result: QueryResult) -> None:
        record.last_result = result
        for listener in list(record.listeners):
            if listener.active:
                self._invoke(listener, result)

    @staticmethod
    def _invoke(listener: _Listener, result: QueryResult) -> None:
        try:
            listener.callback(result)
        except Exception:
            logger.exception("Subscription callback raised")

    # -- Lookup ---------------------------------------------------------------

    def records(self) -> list[SubscriptionRecord]:
        return list(self._records.values())

    def get(self, fp: str) -> SubscriptionRecord | None:
        return self._records.get(fp)

    def find_by_event_id(self, event_id: str | None) -> SubscriptionRecord | None:
        if event_id is None:
            return None
        for record in self._records.values():
            if record.event_id == event_id:
                return record
        return None

    def has_event_id(self, event_id: str | None) -> bool:
        return self.find_by_event_id(event_id) is not None

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, fp: object) -> bool:
        return fp in self._records
