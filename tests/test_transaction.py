"""Tests for the transaction builder and tx-step compilation."""

import pytest

from instant_client.errors import InvalidQueryError
from instant_client.transaction import (
    TransactionChunk,
    lookup,
    new_id,
    transform,
    tx,
)


class TestBuilder:
    def test_chunk_identity(self):
        chunk = tx.goals["g1"]
        assert chunk == TransactionChunk("goals", "g1")
        assert tx["goals"]["g1"] == chunk

    def test_ops_accumulate_immutably(self):
        base = tx.goals["g1"]
        chunk = base.update({"title": "x"}).link({"todos": "t1"})
        assert base.ops == ()
        assert [op[0] for op in chunk.ops] == ["update", "link"]

    def test_empty_id_rejected(self):
        with pytest.raises(InvalidQueryError):
            tx.goals[""]

    def test_private_names_not_namespaces(self):
        with pytest.raises(AttributeError):
            tx._secret

    def test_new_id_unique(self):
        assert new_id() != new_id()

    def test_lookup(self):
        assert lookup("email", "joe@example.com") == 'lookup__email__"joe@example.com"'
        assert lookup("n", 5) == "lookup__n__5"


class TestTransform:
    def test_update(self, attrs):
        steps, new = transform([tx.goals["g1"].update({"title": "Ship v1"})], attrs)
        assert steps == [
            ["add-triple", "g1", "attr-goal-id", "g1"],
            ["add-triple", "g1", "attr-title", "Ship v1"],
        ]
        assert new == []

    def test_update_with_opts(self, attrs):
        steps, _ = transform(
            [tx.goals["g1"].update({"title": "x"}, {"upsert": False})], attrs
        )
        assert steps[1] == ["add-triple", "g1", "attr-title", "x", {"upsert": False}]

    def test_create(self, attrs):
        steps, _ = transform([tx.goals["g1"].create({"title": "x"})], attrs)
        assert steps == [
            ["add-triple", "g1", "attr-goal-id", "g1", {"mode": "create"}],
            ["add-triple", "g1", "attr-title", "x", {"mode": "create"}],
        ]

    def test_merge(self, attrs):
        steps, _ = transform([tx.goals["g1"].merge({"title": {"a": 1}})], attrs)
        assert steps[1] == ["deep-merge-triple", "g1", "attr-title", {"a": 1}]

    def test_delete(self, attrs):
        steps, _ = transform([tx.goals["g1"].delete()], attrs)
        assert steps == [["delete-entity", "g1", "goals"]]

    def test_link_and_unlink(self, attrs):
        steps, new = transform(
            [tx.goals["g1"].link({"todos": ["t1", "t2"]}).unlink({"todos": "t3"})],
            attrs,
        )
        [link_attr] = new
        assert link_attr.namespace == "goals"
        assert link_attr.label == "todos"
        assert steps[0][0] == "add-attr"
        assert steps[1:] == [
            ["add-triple", "g1", link_attr.id, "t1"],
            ["add-triple", "g1", link_attr.id, "t2"],
            ["retract-triple", "g1", link_attr.id, "t3"],
        ]

    def test_link_skips_non_string_targets(self, attrs):
        steps, new = transform([tx.goals["g1"].link({"todos": [1, None]})], attrs)
        assert steps == []
        assert new == []

    def test_unknown_labels_minted_once(self, attrs):
        steps, new = transform(
            [
                tx.goals["g1"].update({"priority": 1}),
                tx.goals["g2"].update({"priority": 2}),
            ],
            attrs,
        )
        [attr] = new
        assert attr.label == "priority"
        assert attr.unique is False
        add_attr = [s for s in steps if s[0] == "add-attr"]
        assert len(add_attr) == 1
        assert add_attr[0][1]["isUnsynced"] is True
        assert add_attr[0][1]["id"] == attr.id
        # add-attr steps lead
        assert steps[0][0] == "add-attr"
        assert steps[2] == ["add-triple", "g1", attr.id, 1]

    def test_new_namespace_mints_unique_id_attr(self):
        steps, new = transform([tx.tags["t1"].update({"name": "x"})], [])
        by_label = {a.label: a for a in new}
        assert by_label["id"].unique is True
        assert by_label["name"].unique is False
        assert [s[0] for s in steps] == ["add-attr", "add-attr", "add-triple", "add-triple"]

    def test_multiple_chunks_in_order(self, attrs):
        steps, _ = transform(
            [tx.goals["g1"].delete(), tx.todos["t1"].delete()], attrs
        )
        assert steps == [
            ["delete-entity", "g1", "goals"],
            ["delete-entity", "t1", "todos"],
        ]

    def test_bad_update_argument(self, attrs):
        chunk = TransactionChunk("goals", "g1", (("update", "goals", "g1", "nope"),))
        with pytest.raises(InvalidQueryError):
            transform([chunk], attrs)

    def test_unknown_action(self, attrs):
        chunk = TransactionChunk("goals", "g1", (("explode", "goals", "g1"),))
        with pytest.raises(InvalidQueryError):
            transform([chunk], attrs)

    def test_non_chunk(self, attrs):
        with pytest.raises(InvalidQueryError):
            transform([["delete-entity", "g1", "goals"]], attrs)
