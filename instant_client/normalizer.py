# =============================================================================
# Instant Python Client -- Result Normalizer
# =============================================================================
#
# Turns the server's datalog result into InstaQL-shaped data.
#
#   [{"data": {"datalog-result": {"join-rows": [[[e, a, v, t], ...], ...]}}}]
#       -> {"goals": [{"id": e, "title": v}, ...]}
#
# Links are not nested yet: every namespace that shows up in the quads is
# returned flat at the top level.
# =============================================================================

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

from ._logging import logger
from .constants import KEY_DATA, KEY_DATALOG_RESULT, KEY_JOIN_ROWS, KEY_PAGE_INFO
from .pagination import PageInfo
from .types import Attribute

Quad = tuple[str, str, Any, Any]
NormalizedData = dict[str, list[dict[str, Any]]]


def _block_data(block: Any) -> Mapping[str, Any] | None:
    if not isinstance(block, Mapping):
        return None
    data = block.get(KEY_DATA)
    return data if isinstance(data, Mapping) else None


def iter_quads(result_blocks: Iterable[Any]) -> Iterator[Quad]:
    """Yield every quad from every join-row group of every block."""
    for block in result_blocks or ():
        data = _block_data(block)
        if data is None:
            continue
        datalog = data.get(KEY_DATALOG_RESULT)
        if not isinstance(datalog, Mapping):
            continue
        for group in datalog.get(KEY_JOIN_ROWS) or ():
            if not isinstance(group, list):
                continue
            for row in group:
                if not isinstance(row, (list, tuple)) or len(row) < 3:
                    continue
                entity_id, attr_id = row[0], row[1]
                if not isinstance(entity_id, str) or not isinstance(attr_id, str):
                    continue
                timestamp = row[3] if len(row) > 3 else None
                yield entity_id, attr_id, row[2], timestamp


def index_attributes(attributes: Iterable[Attribute]) -> dict[str, Attribute]:
    return {attr.id: attr for attr in attributes}


def normalize(
    result_blocks: Iterable[Any],
    attributes: Iterable[Attribute] | Mapping[str, Attribute],
) -> NormalizedData:
    """Group quads into entities, per namespace.

    Quads whose attribute is unknown are dropped; this happens briefly
    while attrs are being replaced after a reconnect.  An ``id`` quad
    creates the entity but never adds an ``id`` field of its own.

    Args:
        result_blocks: The ``result`` list of ``add-query-ok`` or the
            ``instaql-result`` of a refresh computation.
        attributes: Current attributes, as a list or an id -> attr map.

    Returns:
        ``{namespace: [{"id": ..., <label>: <value>, ...}, ...]}``
    """
    by_id = (
        attributes
        if isinstance(attributes, Mapping)
        else index_attributes(attributes)
    )

    entities: dict[str, dict[str, dict[str, Any]]] = {}
    dropped = 0
    for entity_id, attr_id, value, _ts in iter_quads(result_blocks):
        attr = by_id.get(attr_id)
        if attr is None:
            dropped += 1
            continue

        records = entities.setdefault(attr.namespace, {})
        record = records.get(entity_id)
        if record is None:
            record = records[entity_id] = {"id": entity_id}
        if attr.label == "id":
            continue
        record[attr.label] = value

    if dropped:
        logger.debug("Dropped %d quads with unknown attributes", dropped)

    return {ns: list(records.values()) for ns, records in entities.items()}


def _page_info_container(result_blocks: Any) -> Any:
    if not isinstance(result_blocks, list) or not result_blocks:
        return None
    data = _block_data(result_blocks[0])
    if data is None:
        return None
    return data.get(KEY_PAGE_INFO)


def extract_page_info(result_blocks: Any, namespace: str) -> PageInfo | None:
    """Page info for *namespace*, or ``None`` if the query was not paginated."""
    return PageInfo.from_wire(_page_info_container(result_blocks), namespace)


def extract_all_page_info(result_blocks: Any) -> dict[str, PageInfo] | None:
    """Page info for every namespace present, or ``None`` when there is none."""
    container = _page_info_container(result_blocks)
    if not isinstance(container, Mapping) or not container:
        return None
    found: dict[str, PageInfo] = {}
    for namespace in container:
        info = PageInfo.from_wire(container, namespace)
        if info is not None:
            found[namespace] = info
    return found or None
