# =============================================================================
# Instant Python Client -- Wire Protocol Codec
# =============================================================================
#
# Every frame is one JSON object with an "op" discriminator:
#
# Outgoing (client -> server):
#   {"op": "add-query", "client-event-id": "<uuid>", "q": {...}}
#
# Incoming (server -> client):
#   {"op": "refresh-ok", "computations": [...], ...}
#
# Only top-level keys are renamed between hyphenated wire names and
# snake_case Python names.  Nested values (queries, results, attrs) are user
# data and are passed through untouched.
# =============================================================================

from __future__ import annotations

import json
import re

from enum import Enum
from uuid import uuid4
from typing import Any, Mapping

from ._logging import logger
from .constants import KEY_CLIENT_EVENT_ID, KEY_OP, MAX_MESSAGE_SIZE
from .errors import DecodingError, EncodingError
from .types import Envelope, WireValue

try:
    import orjson

    def _json_loads(data: str | bytes) -> Any:
        return orjson.loads(data)

    def _json_dumps(obj: Any) -> str:
        return orjson.dumps(obj).decode()

    def canonical_json(obj: Any) -> str:
        """Sorted-key compact JSON, stable for structurally equal values."""
        return orjson.dumps(obj, option=orjson.OPT_SORT_KEYS).decode()

except ImportError:

    def _json_loads(data: str | bytes) -> Any:
        return json.loads(data)

    def _json_dumps(obj: Any) -> str:
        return json.dumps(obj, separators=(",", ":"), allow_nan=False)

    def canonical_json(obj: Any) -> str:
        """Sorted-key compact JSON, stable for structurally equal values."""
        return json.dumps(
            obj, sort_keys=True, separators=(",", ":"), allow_nan=False
        )


_WIRE_KEY = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_PY_KEY = re.compile(r"^[a-z0-9]+(_[a-z0-9]+)*$")


def wire_key_to_python(key: str) -> str:
    """``client-event-id`` -> ``client_event_id``.

    Keys that would not survive the reverse conversion (``has-next-page?``,
    ``camelCase``, ``already_snake``) are returned unchanged so that the
    mapping stays lossless.
    """
    if _WIRE_KEY.match(key) and "-" in key:
        return key.replace("-", "_")
    return key


def python_key_to_wire(key: str) -> str:
    """``tx_steps`` -> ``tx-steps``; inverse of :func:`wire_key_to_python`."""
    if _PY_KEY.match(key) and "_" in key:
        return key.replace("_", "-")
    return key


def to_wire(value: Any) -> WireValue:
    """Convert a Python value into a JSON-compatible :data:`WireValue`.

    Tuples become lists, enums their value, and objects exposing
    ``to_wire()`` (cursors, attributes) are asked to convert themselves.

    Raises:
        EncodingError: For values with no JSON representation.
    """
    if isinstance(value, Enum):
        return to_wire(value.value)
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise EncodingError(f"non-finite float {value!r} cannot be sent")
        return value
    if isinstance(value, Mapping):
        out: dict[str, WireValue] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise EncodingError(f"object keys must be strings, got {k!r}")
            out[k] = to_wire(v)
        return out
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    converter = getattr(value, "to_wire", None)
    if callable(converter):
        return to_wire(converter())
    raise EncodingError(f"cannot encode value of type {type(value).__name__}")


class MessageCodec:
    """Encode and decode Instant session envelopes."""

    def __init__(self, max_message_size: int = MAX_MESSAGE_SIZE) -> None:
        self._max_message_size = max_message_size

    @property
    def max_message_size(self) -> int:
        return self._max_message_size

    def encode(
        self,
        op: str,
        fields: Mapping[str, Any] | None = None,
        *,
        client_event_id: str | None = None,
    ) -> tuple[str, str]:
        """Encode an outgoing envelope.

        Args:
            op: Operation name, e.g. ``"add-query"``.
            fields: Top-level fields with snake_case names.
            client_event_id: Correlation id; a fresh UUID when omitted.

        Returns:
            ``(client_event_id, json_text)``.

        Raises:
            EncodingError: If a value is not JSON-serializable.
        """
        event_id = client_event_id or str(uuid4())
        message: dict[str, Any] = {KEY_OP: op, KEY_CLIENT_EVENT_ID: event_id}
        for key, value in (fields or {}).items():
            message[python_key_to_wire(key)] = to_wire(value)
        try:
            text = _json_dumps(message)
        except (TypeError, ValueError) as exc:
            raise EncodingError(f"failed to encode {op!r}: {exc}") from exc
        return event_id, text

    def decode(self, data: str | bytes) -> Envelope:
        """Decode an incoming frame.

        Raises:
            DecodingError: If the frame is not a JSON object with an ``op``.
        """
        if len(data) > self._max_message_size:
            raise DecodingError(f"message exceeds max size ({len(data)} bytes)")
        try:
            parsed = _json_loads(data)
        except (json.JSONDecodeError, ValueError, UnicodeDecodeError) as exc:
            raise DecodingError(f"invalid JSON: {exc}") from exc

        if not isinstance(parsed, dict):
            raise DecodingError(f"envelope must be an object, got {type(parsed).__name__}")
        op = parsed.get(KEY_OP)
        if not isinstance(op, str) or not op:
            raise DecodingError("envelope has no op")

        event_id = parsed.get(KEY_CLIENT_EVENT_ID)
        fields = {
            wire_key_to_python(k): v
            for k, v in parsed.items()
            if k not in (KEY_OP, KEY_CLIENT_EVENT_ID)
        }
        logger.debug("Decoded %s (%d fields)", op, len(fields))
        return Envelope(
            op=op,
            fields=fields,
            client_event_id=str(event_id) if event_id is not None else None,
        )
