# =============================================================================
# Instant Python Client -- Cursors and Page Info
# =============================================================================
#
# Server format (inside the first result block's "data" section):
#
#   "page-info": {
#     "goals": {
#       "start-cursor": [entity_id, attr_id, value, timestamp],
#       "end-cursor":   [entity_id, attr_id, value, timestamp],
#       "has-next-page?": true,
#       "has-previous-page?": false
#     }
#   }
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import (
    KEY_END_CURSOR,
    KEY_HAS_NEXT_PAGE,
    KEY_HAS_PREVIOUS_PAGE,
    KEY_START_CURSOR,
)
from .errors import DecodingError
from .protocol import canonical_json
from .types import WireValue


@dataclass(frozen=True, eq=True)
class Cursor:
    """Opaque pagination cursor.

    Do not build cursors by hand; take ``page_info.end_cursor`` (or
    ``start_cursor``) from a result and pass it to ``after()`` /
    ``before()``.
    """

    values: tuple[WireValue, ...]

    def __post_init__(self) -> None:
        if len(self.values) != 4:
            raise DecodingError(f"cursor must have 4 elements, got {len(self.values)}")

    @classmethod
    def from_wire(cls, raw: Any) -> Cursor:
        if not isinstance(raw, (list, tuple)):
            raise DecodingError(f"cursor must be a list, got {raw!r}")
        return cls(tuple(raw))

    def to_wire(self) -> list[WireValue]:
        return list(self.values)

    @property
    def entity_id(self) -> WireValue:
        return self.values[0]

    @property
    def attribute_id(self) -> WireValue:
        return self.values[1]

    @property
    def value(self) -> WireValue:
        return self.values[2]

    @property
    def timestamp(self) -> WireValue:
        return self.values[3]

    def __hash__(self) -> int:
        # values may hold lists/dicts (json attrs); hash their canonical form
        return hash(canonical_json(list(self.values)))


@dataclass(frozen=True)
class PageInfo:
    """Pagination metadata for one namespace of a ``first``/``last`` query."""

    start_cursor: Cursor | None = None
    end_cursor: Cursor | None = None
    has_next_page: bool = False
    has_previous_page: bool = False

    @classmethod
    def from_wire(cls, raw: Any, namespace: str) -> PageInfo | None:
        """Parse the ``page-info`` container for *namespace*.

        Returns ``None`` when the container is missing or empty, or has no
        entry for *namespace*.
        """
        if not isinstance(raw, dict) or not raw:
            return None
        info = raw.get(namespace)
        if not isinstance(info, dict):
            return None

        start = info.get(KEY_START_CURSOR)
        end = info.get(KEY_END_CURSOR)
        return cls(
            start_cursor=Cursor.from_wire(start) if start is not None else None,
            end_cursor=Cursor.from_wire(end) if end is not None else None,
            has_next_page=bool(info.get(KEY_HAS_NEXT_PAGE, False)),
            has_previous_page=bool(info.get(KEY_HAS_PREVIOUS_PAGE, False)),
        )
