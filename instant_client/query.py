# =============================================================================
# Instant Python Client -- Typed Queries
# =============================================================================
#
#     query = (
#         client.query(Goal)
#         .where(lambda g: (g.difficulty > 5) & (g.status != "done"))
#         .order("title")
#         .first(10)
#     )
#     query.to_wire_payload()
#     # {"goals": {"$": {"where": {"and": [...]}, "order": {"title": "asc"},
#     #                  "first": 10}}}
#
# Every modifier returns a new query, so partially built queries can be kept
# around and reused as templates.
# =============================================================================

from __future__ import annotations

import dataclasses

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Generic, Mapping, TypeVar, Union

from .constants import MODIFIERS_KEY
from .entity import namespace_of, wire_name
from .errors import InvalidQueryError
from .pagination import Cursor

if TYPE_CHECKING:
    from .client import InstantClient
    from .registry import Subscription
    from .results import TypedResult
    from .stream import QueryStream

T = TypeVar("T")

ORDER_DIRECTIONS = ("asc", "desc")


# -- Predicates ----------------------------------------------------------------


class Predicate:
    """A where clause; combine with ``&`` and ``|``."""

    __slots__ = ("clause",)

    def __init__(self, clause: Mapping[str, Any]) -> None:
        if not isinstance(clause, Mapping) or not clause:
            raise InvalidQueryError("where clause must be a non-empty mapping")
        self.clause = dict(clause)

    def _parts(self, op: str) -> list[dict[str, Any]]:
        if list(self.clause) == [op]:
            return list(self.clause[op])
        return [self.clause]

    def __and__(self, other: Predicate) -> Predicate:
        if not isinstance(other, Predicate):
            return NotImplemented
        return Predicate({"and": self._parts("and") + other._parts("and")})

    def __or__(self, other: Predicate) -> Predicate:
        if not isinstance(other, Predicate):
            return NotImplemented
        return Predicate({"or": self._parts("or") + other._parts("or")})

    def to_wire(self) -> dict[str, Any]:
        return self.clause

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Predicate):
            return NotImplemented
        return self.clause == other.clause

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Predicate({self.clause!r})"


class QueryField:
    """One attribute inside a ``where`` lambda."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def _op(self, op: str, value: Any) -> Predicate:
        return Predicate({self.name: {op: value}})

    def __eq__(self, value: Any) -> Predicate:  # type: ignore[override]
        return Predicate({self.name: value})

    def __ne__(self, value: Any) -> Predicate:  # type: ignore[override]
        return self._op("$ne", value)

    def __gt__(self, value: Any) -> Predicate:
        return self._op("$gt", value)

    def __ge__(self, value: Any) -> Predicate:
        return self._op("$gte", value)

    def __lt__(self, value: Any) -> Predicate:
        return self._op("$lt", value)

    def __le__(self, value: Any) -> Predicate:
        return self._op("$lte", value)

    def is_in(self, values: Any) -> Predicate:
        return self._op("$in", list(values))

    def like(self, pattern: str) -> Predicate:
        return self._op("$like", pattern)

    def ilike(self, pattern: str) -> Predicate:
        return self._op("$ilike", pattern)

    def is_null(self, flag: bool = True) -> Predicate:
        return self._op("$isNull", flag)

    __hash__ = None  # type: ignore[assignment]


class FieldProxy:
    """Hands out :class:`QueryField`s; knows the wire names of an entity."""

    def __init__(self, entity: type | None = None) -> None:
        self._wire_names: dict[str, str] = {}
        if entity is not None and dataclasses.is_dataclass(entity):
            self._wire_names = {f.name: wire_name(f) for f in dataclasses.fields(entity)}

    def __getattr__(self, name: str) -> QueryField:
        if name.startswith("__"):
            raise AttributeError(name)
        return QueryField(self.wire_name(name))

    def __getitem__(self, name: str) -> QueryField:
        return QueryField(name)

    def wire_name(self, name: str) -> str:
        return self._wire_names.get(name, name)


WhereArg = Union[Predicate, Mapping[str, Any], Callable[[FieldProxy], Predicate]]


def _non_negative(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQueryError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def _cursor(value: Cursor | list[Any] | tuple[Any, ...]) -> Cursor:
    if isinstance(value, Cursor):
        return value
    return Cursor.from_wire(value)


# -- Query descriptor ----------------------------------------------------------


@dataclass(frozen=True)
class TypedQuery(Generic[T]):
    """Immutable query over one namespace.

    ``entity`` is the dataclass results are decoded into; ``None`` keeps
    rows as dicts.  A query made with ``client.query(...)`` is bound to the
    client and can be subscribed to directly.
    """

    namespace: str
    entity: type[T] | None = None
    where_clause: Predicate | None = None
    order_by: tuple[str, str] | None = None
    limit_value: int | None = None
    offset_value: int | None = None
    first_value: int | None = None
    last_value: int | None = None
    after_cursor: Cursor | None = None
    before_cursor: Cursor | None = None
    nested: tuple[tuple[str, dict[str, Any]], ...] = ()
    client: InstantClient | None = field(default=None, compare=False, repr=False)

    @classmethod
    def of(
        cls, target: str | type[T], client: InstantClient | None = None
    ) -> TypedQuery[T]:
        """Query a namespace by name or by entity class."""
        if isinstance(target, str):
            if not target:
                raise InvalidQueryError("namespace must not be empty")
            return cls(namespace=target, client=client)
        return cls(namespace=namespace_of(target), entity=target, client=client)

    # -- Modifiers ------------------------------------------------------------

    def where(self, clause: WhereArg | None = None, /, **equals: Any) -> TypedQuery[T]:
        """Filter results.  Repeated calls are combined with ``and``.

        Accepts a :class:`Predicate`, a raw where mapping, keyword
        equalities, or a callable that receives a field proxy::

            .where(lambda g: g.difficulty > 5)
            .where({"status": "open"})
            .where(status="open")
        """
        predicate: Predicate | None
        if clause is None:
            predicate = None
        elif isinstance(clause, Predicate):
            predicate = clause
        elif isinstance(clause, Mapping):
            predicate = Predicate(clause)
        elif callable(clause):
            predicate = clause(FieldProxy(self.entity))
            if not isinstance(predicate, Predicate):
                raise InvalidQueryError(
                    f"where callable must return a Predicate, got {predicate!r}"
                )
        else:
            raise InvalidQueryError(f"unsupported where clause {clause!r}")

        if equals:
            kw = Predicate(equals)
            predicate = kw if predicate is None else predicate & kw
        if predicate is None:
            raise InvalidQueryError("where() needs a clause")
        if self.where_clause is not None:
            predicate = self.where_clause & predicate
        return replace(self, where_clause=predicate)

    def order(self, field_name: str, direction: str = "asc") -> TypedQuery[T]:
        if direction not in ORDER_DIRECTIONS:
            raise InvalidQueryError(f"order direction must be asc or desc, got {direction!r}")
        return replace(self, order_by=(FieldProxy(self.entity).wire_name(field_name), direction))

    def limit(self, count: int) -> TypedQuery[T]:
        return replace(self, limit_value=_non_negative("limit", count))

    def offset(self, count: int) -> TypedQuery[T]:
        return replace(self, offset_value=_non_negative("offset", count))

    def first(self, count: int) -> TypedQuery[T]:
        """Forward page of *count* rows; results carry page info."""
        return replace(self, first_value=_non_negative("first", count))

    def last(self, count: int) -> TypedQuery[T]:
        """Backward page of *count* rows; results carry page info."""
        return replace(self, last_value=_non_negative("last", count))

    def after(self, cursor: Cursor | list[Any]) -> TypedQuery[T]:
        return replace(self, after_cursor=_cursor(cursor))

    def before(self, cursor: Cursor | list[Any]) -> TypedQuery[T]:
        return replace(self, before_cursor=_cursor(cursor))

    def include(
        self, target: str | type | TypedQuery[Any], sub: Mapping[str, Any] | None = None
    ) -> TypedQuery[T]:
        """Fetch a linked namespace alongside this one."""
        if isinstance(target, TypedQuery):
            name, body = target.namespace, target._inner()
        else:
            name = target if isinstance(target, str) else namespace_of(target)
            body = dict(sub or {})
        kept = tuple((n, b) for n, b in self.nested if n != name)
        return replace(self, nested=kept + ((name, body),))

    # -- Compilation ----------------------------------------------------------

    def _modifiers(self) -> dict[str, Any]:
        mods: dict[str, Any] = {}
        if self.where_clause is not None:
            mods["where"] = self.where_clause.to_wire()
        if self.order_by is not None:
            mods["order"] = {self.order_by[0]: self.order_by[1]}
        if self.limit_value is not None:
            mods["limit"] = self.limit_value
        if self.offset_value is not None:
            mods["offset"] = self.offset_value
        if self.first_value is not None:
            mods["first"] = self.first_value
        if self.last_value is not None:
            mods["last"] = self.last_value
        if self.after_cursor is not None:
            mods["after"] = self.after_cursor.to_wire()
        if self.before_cursor is not None:
            mods["before"] = self.before_cursor.to_wire()
        return mods

    def _inner(self) -> dict[str, Any]:
        inner: dict[str, Any] = {name: body for name, body in self.nested}
        mods = self._modifiers()
        if mods:
            inner[MODIFIERS_KEY] = mods
        return inner

    def to_wire_payload(self) -> dict[str, Any]:
        """``{namespace: {...nested, "$": {...modifiers}}}``."""
        return {self.namespace: self._inner()}

    # -- Bound helpers --------------------------------------------------------

    def bind(self, client: InstantClient) -> TypedQuery[T]:
        return replace(self, client=client)

    def _bound(self) -> InstantClient:
        if self.client is None:
            raise InvalidQueryError("query is not bound to a client; use client.query()")
        return self.client

    def subscribe(self, callback: Callable[[TypedResult[T]], Any]) -> Subscription:
        return self._bound().subscribe(self, callback)

    def values(self) -> QueryStream[T]:
        """Async iterator of results: ``async for result in query.values()``."""
        return self._bound().stream(self)
