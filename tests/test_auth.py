"""Tests for refresh token storage."""

import json

import pytest

from instant_client.auth import AuthProvider, FileTokenStore, MemoryTokenStore
from instant_client.errors import DecodingError
from instant_client.types import User


class TestMemoryTokenStore:
    def test_protocol(self):
        assert isinstance(MemoryTokenStore(), AuthProvider)

    def test_initial_token(self):
        assert MemoryTokenStore("tok").current_refresh_token() == "tok"
        assert MemoryTokenStore().current_refresh_token() is None

    def test_persist_and_clear(self):
        store = MemoryTokenStore()
        user = User(id="u1", refresh_token="rt")
        store.persist(user)
        assert store.current_refresh_token() == "rt"
        assert store.user is user
        store.clear()
        assert store.current_refresh_token() is None
        assert store.user is None

    def test_persist_without_token_keeps_old(self):
        store = MemoryTokenStore("old")
        store.persist(User(id="u1"))
        assert store.current_refresh_token() == "old"


class TestFileTokenStore:
    def test_protocol(self, tmp_path):
        assert isinstance(FileTokenStore(tmp_path / "t.json"), AuthProvider)

    def test_missing_file(self, tmp_path):
        store = FileTokenStore(tmp_path / "token.json")
        assert store.current_refresh_token() is None
        assert store.load_user() is None

    def test_round_trip_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "token.json"
        FileTokenStore(path).persist(
            User(id="u1", email="a@b.c", refresh_token="rt", is_guest=True)
        )

        store = FileTokenStore(path)
        assert store.current_refresh_token() == "rt"
        user = store.load_user()
        assert user.id == "u1"
        assert user.email == "a@b.c"
        assert user.is_guest is True
        assert json.loads(path.read_text())["refresh_token"] == "rt"

    def test_no_temp_files_left(self, tmp_path):
        path = tmp_path / "token.json"
        FileTokenStore(path).persist(User(id="u1", refresh_token="rt"))
        assert [p.name for p in tmp_path.iterdir()] == ["token.json"]

    def test_clear(self, tmp_path):
        path = tmp_path / "token.json"
        store = FileTokenStore(path)
        store.persist(User(id="u1", refresh_token="rt"))
        store.clear()
        assert not path.exists()
        store.clear()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text("{oops")
        with pytest.raises(DecodingError):
            FileTokenStore(path).current_refresh_token()

    def test_non_object_file(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text("[]")
        with pytest.raises(DecodingError):
            FileTokenStore(path).current_refresh_token()
