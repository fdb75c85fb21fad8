# =============================================================================
# Instant Python Client -- Transactions
# =============================================================================
#
# Builder:
#
#     from instant_client import tx, new_id
#
#     goal_id = new_id()
#     chunk = tx.goals[goal_id].update({"title": "Ship v1"}).link({"todos": todo_id})
#     tx_id = await client.transact(chunk)
#
# Chunks record high-level ops; transform() compiles them into tx-steps,
# resolving attribute ids from the session's attrs and minting add-attr steps
# for labels the server has not seen yet.
# =============================================================================

from __future__ import annotations

import json

from dataclasses import dataclass, replace
from uuid import uuid4
from typing import Any, Iterable, Mapping

from .constants import LOOKUP_PREFIX
from .errors import InvalidQueryError
from .types import Attribute, Cardinality, ValueType

Op = tuple[Any, ...]
TxStep = list[Any]


def new_id() -> str:
    """Fresh entity id."""
    return str(uuid4())


def lookup(attribute: str, value: Any) -> str:
    """Reference an entity by a unique attribute instead of its id.

    ``tx.users[lookup("email", "joe@example.com")].update({...})``
    """
    try:
        encoded = json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError):
        encoded = str(value)
    return f"{LOOKUP_PREFIX}{attribute}__{encoded}"


@dataclass(frozen=True)
class TransactionChunk:
    """Ops for one entity.  Every method returns a new chunk."""

    namespace: str
    id: str
    ops: tuple[Op, ...] = ()

    def _with(self, action: str, *args: Any) -> TransactionChunk:
        op = (action, self.namespace, self.id, *args)
        return replace(self, ops=self.ops + (op,))

    def create(self, data: Mapping[str, Any]) -> TransactionChunk:
        return self._with("create", dict(data))

    def update(
        self, data: Mapping[str, Any], opts: Mapping[str, Any] | None = None
    ) -> TransactionChunk:
        if opts is None:
            return self._with("update", dict(data))
        return self._with("update", dict(data), dict(opts))

    def merge(
        self, data: Mapping[str, Any], opts: Mapping[str, Any] | None = None
    ) -> TransactionChunk:
        """Deep-merge *data* into json attributes instead of replacing them."""
        if opts is None:
            return self._with("merge", dict(data))
        return self._with("merge", dict(data), dict(opts))

    def link(self, links: Mapping[str, str | Iterable[str]]) -> TransactionChunk:
        return self._with("link", dict(links))

    def unlink(self, links: Mapping[str, str | Iterable[str]]) -> TransactionChunk:
        return self._with("unlink", dict(links))

    def delete(self) -> TransactionChunk:
        return self._with("delete")


class _NamespaceRef:
    __slots__ = ("_namespace",)

    def __init__(self, namespace: str) -> None:
        self._namespace = namespace

    def __getitem__(self, entity_id: str) -> TransactionChunk:
        if not isinstance(entity_id, str) or not entity_id:
            raise InvalidQueryError(f"entity id must be a non-empty string: {entity_id!r}")
        return TransactionChunk(self._namespace, entity_id)


class TransactionBuilder:
    """``tx.<namespace>[<id>]`` entry point."""

    def __getattr__(self, namespace: str) -> _NamespaceRef:
        if namespace.startswith("_"):
            raise AttributeError(namespace)
        return _NamespaceRef(namespace)

    def __getitem__(self, namespace: str) -> _NamespaceRef:
        return _NamespaceRef(namespace)


tx = TransactionBuilder()


# -- Compilation ---------------------------------------------------------------


class _AttrResolver:
    """Resolves (namespace, label) to attr ids, minting unknown ones."""

    def __init__(self, attributes: Iterable[Attribute]) -> None:
        self._known: dict[tuple[str, str], str] = {}
        for attr in attributes:
            self._known.setdefault((attr.namespace, attr.label), attr.id)
        self.add_attr_steps: list[TxStep] = []
        self.new_attributes: list[Attribute] = []

    def __call__(self, namespace: str, label: str) -> str:
        key = (namespace, label)
        attr_id = self._known.get(key)
        if attr_id is not None:
            return attr_id

        attr = Attribute(
            id=new_id(),
            forward_identity=(new_id(), namespace, label),
            value_type=ValueType.BLOB,
            cardinality=Cardinality.ONE,
            unique=label == "id",
            indexed=False,
        )
        self._known[key] = attr.id
        self.new_attributes.append(attr)
        self.add_attr_steps.append(["add-attr", {**attr.to_wire(), "isUnsynced": True}])
        return attr.id


def _require_mapping(value: Any, action: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidQueryError(f"{action} expects a mapping, got {type(value).__name__}")
    return value


def _link_ids(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [v for v in value if isinstance(v, str)]
    return []


def _triple(step: str, eid: str, attr_id: str, value: Any, opts: Any) -> TxStep:
    if opts is None:
        return [step, eid, attr_id, value]
    return [step, eid, attr_id, value, dict(_require_mapping(opts, step))]


def _expand(op: Op, resolve: _AttrResolver) -> list[TxStep]:
    if len(op) < 3:
        raise InvalidQueryError(f"transaction op is too short: {op!r}")
    action, namespace, eid = op[0], op[1], op[2]
    if not isinstance(namespace, str) or not isinstance(eid, str):
        raise InvalidQueryError(f"transaction op needs a namespace and id: {op!r}")
    arg = op[3] if len(op) > 3 else None
    opts = op[4] if len(op) > 4 else None

    if action == "delete":
        return [["delete-entity", eid, namespace]]

    if action == "create":
        data = _require_mapping(arg, action)
        create = {"mode": "create"}
        steps = [_triple("add-triple", eid, resolve(namespace, "id"), eid, create)]
        steps += [
            _triple("add-triple", eid, resolve(namespace, k), v, create)
            for k, v in data.items()
        ]
        return steps

    if action in ("update", "merge"):
        data = _require_mapping(arg, action)
        step = "add-triple" if action == "update" else "deep-merge-triple"
        steps = [_triple("add-triple", eid, resolve(namespace, "id"), eid, opts)]
        steps += [
            _triple(step, eid, resolve(namespace, k), v, opts) for k, v in data.items()
        ]
        return steps

    if action in ("link", "unlink"):
        links = _require_mapping(arg, action)
        step = "add-triple" if action == "link" else "retract-triple"
        steps = []
        for label, value in links.items():
            targets = _link_ids(value)
            if not targets:
                continue
            attr_id = resolve(namespace, label)
            steps += [[step, eid, attr_id, target] for target in targets]
        return steps

    raise InvalidQueryError(f"unknown transaction action {action!r}")


def transform(
    chunks: Iterable[TransactionChunk], attributes: Iterable[Attribute]
) -> tuple[list[TxStep], list[Attribute]]:
    """Compile *chunks* into tx-steps.

    Returns:
        ``(tx_steps, new_attributes)``; add-attr steps come first, then the
        data steps in op order.  ``new_attributes`` are the attrs minted for
        unknown labels.

    Raises:
        InvalidQueryError: For malformed ops.
    """
    resolve = _AttrResolver(attributes)
    data_steps: list[TxStep] = []
    for chunk in chunks:
        if not isinstance(chunk, TransactionChunk):
            raise InvalidQueryError(f"expected TransactionChunk, got {type(chunk).__name__}")
        for op in chunk.ops:
            data_steps += _expand(op, resolve)
    return resolve.add_attr_steps + data_steps, resolve.new_attributes
