# =============================================================================
# Instant Python Client -- Entity Declarations
# =============================================================================
#
# Entities are plain dataclasses that name their namespace:
#
#     @dataclass
#     class Goal:
#         __namespace__ = "goals"
#
#         id: str
#         title: str
#         difficulty: int | None = None
#         created_at: int | None = field(default=None, metadata={"wire": "createdAt"})
# =============================================================================

from __future__ import annotations

import dataclasses
from typing import Any, Iterable, TypeVar

from .errors import DecodingError

T = TypeVar("T")

NAMESPACE_ATTR = "__namespace__"


def namespace_of(entity: type) -> str:
    """Return the namespace declared on an entity class."""
    namespace = getattr(entity, NAMESPACE_ATTR, None)
    if not isinstance(namespace, str) or not namespace:
        raise TypeError(f"{entity.__name__} does not declare {NAMESPACE_ATTR}")
    return namespace


def wire_name(f: dataclasses.Field) -> str:
    return f.metadata.get("wire", f.name)


def _required(f: dataclasses.Field) -> bool:
    return (
        f.default is dataclasses.MISSING
        and f.default_factory is dataclasses.MISSING  # type: ignore[misc]
    )


def decode_entity(entity: type[T], row: dict[str, Any]) -> T:
    """Build one *entity* from a normalized row.

    A ``from_wire`` classmethod on the entity wins.  Otherwise the entity
    must be a dataclass; unknown keys are ignored and missing required
    fields raise :class:`DecodingError`.
    """
    custom = getattr(entity, "from_wire", None)
    if callable(custom):
        try:
            return custom(row)
        except DecodingError:
            raise
        except Exception as exc:
            raise DecodingError(f"{entity.__name__}.from_wire failed: {exc}") from exc

    if not dataclasses.is_dataclass(entity):
        raise TypeError(f"{entity.__name__} is neither a dataclass nor has from_wire")

    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(entity):
        if not f.init:
            continue
        key = wire_name(f)
        if key in row:
            kwargs[f.name] = row[key]
        elif _required(f):
            raise DecodingError(
                f"{entity.__name__}: missing field {key!r} in entity {row.get('id')!r}"
            )
    try:
        return entity(**kwargs)
    except DecodingError:
        raise
    except Exception as exc:
        raise DecodingError(f"{entity.__name__}: {exc}") from exc


def decode_entities(entity: type[T], rows: Iterable[dict[str, Any]]) -> list[T]:
    return [decode_entity(entity, row) for row in rows]
