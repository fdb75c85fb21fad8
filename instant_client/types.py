# =============================================================================
# Instant Python Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import DecodingError

# JSON as it travels on the wire.  Business logic passes these around instead
# of bare ``Any`` so the dynamic parts of the protocol stay visible.
WireValue = Union[
    str, int, float, bool, None, list["WireValue"], dict[str, "WireValue"]
]
WireObject = dict[str, WireValue]


class ConnectionState(str, Enum):
    """Session lifecycle state.

    Typical flow: DISCONNECTED -> CONNECTING -> CONNECTED -> AUTHENTICATED.
    ERROR is entered on transport failure; the reason is kept on the
    transport as ``error_reason`` and reconnection moves back to CONNECTING.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class ValueType(str, Enum):
    """Value kind of an attribute."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"
    BLOB = "blob"
    REF = "ref"


class Cardinality(str, Enum):
    ONE = "one"
    MANY = "many"


class ReconnectMode(str, Enum):
    """Backoff strategy for auto-reconnection after a connection drop."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIBONACCI = "fibonacci"


def _identity(raw: Any, key: str) -> tuple[str, str, str] | None:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)) or len(raw) < 3:
        raise DecodingError(f"attribute {key} must be a 3-element list, got {raw!r}")
    return (str(raw[0]), str(raw[1]), str(raw[2]))


@dataclass(frozen=True, slots=True)
class Attribute:
    """Server-defined schema attribute (one column or link edge).

    Attributes:
        id: Stable attribute id referenced by quads.
        forward_identity: ``(ident_id, namespace, label)``.
        reverse_identity: Same shape for the reverse side of a link.
        value_type: Kind of value stored.
        cardinality: ``one`` or ``many``.
        unique: Whether values are unique across entities.
        indexed: Whether the attribute is indexed (needed for ordering).
        checked_data_type: Optional server-enforced data type.
    """

    id: str
    forward_identity: tuple[str, str, str]
    reverse_identity: tuple[str, str, str] | None = None
    value_type: ValueType | str = ValueType.BLOB
    cardinality: Cardinality = Cardinality.ONE
    unique: bool = False
    indexed: bool = False
    checked_data_type: str | None = None

    @property
    def namespace(self) -> str:
        return self.forward_identity[1]

    @property
    def label(self) -> str:
        return self.forward_identity[2]

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> Attribute:
        if not isinstance(raw, dict) or "id" not in raw:
            raise DecodingError(f"attribute must be an object with an id: {raw!r}")
        forward = _identity(raw.get("forward-identity"), "forward-identity")
        if forward is None:
            raise DecodingError(f"attribute {raw['id']} has no forward-identity")

        value_type: ValueType | str
        try:
            value_type = ValueType(raw.get("value-type", "blob"))
        except ValueError:
            # Newer servers may add kinds; keep the raw string
            value_type = str(raw.get("value-type"))
        try:
            cardinality = Cardinality(raw.get("cardinality", "one"))
        except ValueError as exc:
            raise DecodingError(f"bad cardinality on attribute {raw['id']}") from exc

        return cls(
            id=str(raw["id"]),
            forward_identity=forward,
            reverse_identity=_identity(raw.get("reverse-identity"), "reverse-identity"),
            value_type=value_type,
            cardinality=cardinality,
            unique=bool(raw.get("unique?", raw.get("unique", False))),
            indexed=bool(
                raw.get("index?", raw.get("indexed?", raw.get("indexed", False)))
            ),
            checked_data_type=raw.get("checked-data-type"),
        )

    def to_wire(self) -> dict[str, Any]:
        value_type = (
            self.value_type.value
            if isinstance(self.value_type, ValueType)
            else self.value_type
        )
        return {
            "id": self.id,
            "forward-identity": list(self.forward_identity),
            "reverse-identity": (
                list(self.reverse_identity) if self.reverse_identity else None
            ),
            "value-type": value_type,
            "cardinality": self.cardinality.value,
            "unique?": self.unique,
            "index?": self.indexed,
        }


@dataclass(frozen=True, slots=True)
class User:
    """Signed-in (or guest) user as reported by ``init-ok``."""

    id: str
    email: str | None = None
    refresh_token: str | None = None
    is_guest: bool = False

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> User:
        if not isinstance(raw, dict) or "id" not in raw:
            raise DecodingError(f"user must be an object with an id: {raw!r}")
        return cls(
            id=str(raw["id"]),
            email=raw.get("email"),
            refresh_token=raw.get("refresh_token") or raw.get("refresh-token"),
            is_guest=bool(raw.get("isGuest") or raw.get("is-guest")),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "refresh_token": self.refresh_token,
            "isGuest": self.is_guest,
        }


@dataclass(frozen=True, slots=True)
class AppInfo:
    id: str
    title: str | None = None


@dataclass(frozen=True, slots=True)
class AuthInfo:
    """The ``auth`` block of ``init-ok``."""

    user: User | None = None
    app: AppInfo | None = None
    admin: bool = False

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> AuthInfo:
        if not isinstance(raw, dict):
            raise DecodingError(f"auth must be an object: {raw!r}")
        user_raw = raw.get("user")
        app_raw = raw.get("app")
        app = None
        if isinstance(app_raw, dict) and "id" in app_raw:
            app = AppInfo(id=str(app_raw["id"]), title=app_raw.get("title"))
        return cls(
            user=User.from_wire(user_raw) if user_raw else None,
            app=app,
            admin=bool(raw.get("admin")),
        )


@dataclass(frozen=True, slots=True)
class Envelope:
    """A decoded server message.

    Attributes:
        op: Operation discriminator, e.g. ``"refresh-ok"``.
        fields: Every other top-level field, keys converted to snake_case
            (``session-id`` -> ``session_id``).  Unknown fields are kept.
        client_event_id: Correlation id echoed by the server, if any.
    """

    op: str
    fields: dict[str, Any] = field(default_factory=dict)
    client_event_id: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass
class ConnectionStats:
    """Counters for a single client."""

    messages_received: int = 0
    messages_sent: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    dropped_messages: int = 0
    reconnect_count: int = 0
    connected_since: float | None = None


@dataclass
class ReconnectConfig:
    """Configuration for automatic reconnection.

    Attributes:
        mode: Backoff strategy (default: exponential).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Maximum delay cap in seconds.
        max_attempts: Max retries, ``-1`` for infinite.
        factor: Multiplier per attempt for exponential backoff.
        jitter: Randomize delays to avoid thundering herd.
        enabled: Set False to surface connection loss without retrying.
    """

    mode: ReconnectMode = ReconnectMode.EXPONENTIAL
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = -1
    factor: float = 1.5
    jitter: bool = True
    enabled: bool = True
