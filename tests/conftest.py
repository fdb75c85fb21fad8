"""Shared fixtures for instant_client unit tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from instant_client.client import InstantClient
from instant_client.types import Attribute, ConnectionState


def _attr(attr_id: str, namespace: str, label: str, **extra) -> Attribute:
    return Attribute(
        id=attr_id,
        forward_identity=(f"fwd-{attr_id}", namespace, label),
        **extra,
    )


@pytest.fixture()
def attrs():
    """A small schema: goals(id, title, difficulty) and todos(id, text)."""
    return [
        _attr("attr-goal-id", "goals", "id", unique=True),
        _attr("attr-title", "goals", "title"),
        _attr("attr-difficulty", "goals", "difficulty", indexed=True),
        _attr("attr-todo-id", "todos", "id", unique=True),
        _attr("attr-todo-text", "todos", "text"),
    ]


@pytest.fixture()
def wire_attrs(attrs):
    """The same schema as it arrives in init-ok."""
    return [attr.to_wire() for attr in attrs]


@pytest.fixture()
def make_blocks():
    """Build an add-query-ok ``result`` list from quads."""

    def build(quads, page_info=None):
        data = {"datalog-result": {"join-rows": [[list(q) for q in quads]]}}
        if page_info is not None:
            data["page-info"] = page_info
        return [{"data": data}]

    return build


@pytest.fixture()
def client():
    """Create a client with mocked connection manager."""
    c = InstantClient("test-app", base_url="ws://localhost:8888")
    # Mock the connection manager to avoid real WebSocket
    conn = MagicMock()
    conn.state = ConnectionState.CONNECTED
    conn.is_connected = True
    conn.error_reason = None

    async def send(op, fields=None, *, client_event_id=None):
        return client_event_id or f"evt-{conn.send.call_count}"

    def mark_authenticated():
        conn.state = ConnectionState.AUTHENTICATED

    conn.send = AsyncMock(side_effect=send)
    conn.connect = AsyncMock()
    conn.disconnect = AsyncMock()
    conn.mark_authenticated = MagicMock(side_effect=mark_authenticated)
    c._connection = conn
    return c


@pytest.fixture()
def sent_ops():
    """``sent_ops(client)`` -> ``[(op, fields, client_event_id), ...]``."""

    def collect(c):
        ops = []
        for call in c._connection.send.call_args_list:
            fields = call.args[1] if len(call.args) > 1 else call.kwargs.get("fields")
            ops.append((call.args[0], fields, call.kwargs.get("client_event_id")))
        return ops

    return collect
