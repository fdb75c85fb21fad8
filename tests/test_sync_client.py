"""Tests for SyncInstantClient."""

import pytest

from instant_client.errors import InstantConnectionError
from instant_client.query import TypedQuery
from instant_client.sync_client import SyncInstantClient
from instant_client.transaction import tx
from instant_client.types import ConnectionState


class TestSyncClientInit:
    def test_defaults(self):
        client = SyncInstantClient("my-app")
        assert client.state == ConnectionState.DISCONNECTED
        assert client.is_ready is False
        assert client.client is None

    def test_query_is_unbound(self):
        query = SyncInstantClient("my-app").query("goals").where(title="x")
        assert isinstance(query, TypedQuery)
        assert query.client is None
        assert query.to_wire_payload() == {"goals": {"$": {"where": {"title": "x"}}}}

    def test_close_alias(self):
        client = SyncInstantClient("my-app")
        # Should not raise even when not connected
        client.disconnect()
        client.close()

    def test_subscribe_requires_connect(self):
        client = SyncInstantClient("my-app")
        with pytest.raises(InstantConnectionError):
            client.subscribe({"goals": {}}, print)

    def test_transact_requires_connect(self):
        client = SyncInstantClient("my-app")
        with pytest.raises(InstantConnectionError):
            client.transact(tx.goals["g1"].delete())
