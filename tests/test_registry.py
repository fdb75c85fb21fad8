"""Tests for SubscriptionRegistry: dedup, replay, teardown, fan-out."""

from unittest.mock import MagicMock

import pytest

from instant_client.errors import DecodingError, InvalidQueryError, ServerError
from instant_client.registry import SubscriptionRegistry, fingerprint
from instant_client.results import ResultStatus


@pytest.fixture
def hooks():
    return MagicMock(), MagicMock()


@pytest.fixture
def registry(hooks):
    on_add, on_remove = hooks
    return SubscriptionRegistry(on_add_query=on_add, on_remove_query=on_remove)


def _computation(query, blocks):
    return {"instaql-query": query, "instaql-result": blocks}


class TestFingerprint:
    def test_key_order_irrelevant(self):
        a = {"goals": {"$": {"where": {"a": 1, "b": 2}, "limit": 5}}, "todos": {}}
        b = {"todos": {}, "goals": {"$": {"limit": 5, "where": {"b": 2, "a": 1}}}}
        assert fingerprint(a) == fingerprint(b)

    def test_different_queries_differ(self):
        assert fingerprint({"goals": {}}) != fingerprint({"todos": {}})

    def test_rejects_empty(self):
        with pytest.raises(InvalidQueryError):
            fingerprint({})

    def test_rejects_non_mapping(self):
        with pytest.raises(InvalidQueryError):
            fingerprint(["goals"])

    def test_rejects_unserializable(self):
        with pytest.raises(InvalidQueryError):
            fingerprint({"goals": {"$": {"where": {"x": object()}}}})


class TestSubscribe:
    def test_new_query_sends_and_delivers_loading(self, registry, hooks):
        on_add, _ = hooks
        seen = []
        registry.subscribe({"goals": {}}, seen.append)
        on_add.assert_called_once()
        record = on_add.call_args[0][0]
        assert record.query == {"goals": {}}
        assert [r.status for r in seen] == [ResultStatus.LOADING]

    def test_dedup_before_result(self, registry, hooks):
        on_add, _ = hooks
        first, second = [], []
        registry.subscribe({"goals": {}}, first.append)
        registry.subscribe({"goals": {}}, second.append)
        assert on_add.call_count == 1
        assert len(registry) == 1
        assert [r.is_loading for r in first + second] == [True, True]

    def test_late_subscriber_replay(self, registry, hooks):
        on_add, _ = hooks
        registry.subscribe({"goals": {}}, lambda r: None)
        record = on_add.call_args[0][0]
        registry.handle_result(record.event_id, {"goals": [{"id": "g1"}]})

        late = []
        registry.subscribe({"goals": {}}, late.append)
        assert len(late) == 1
        assert late[0].is_success
        assert late[0].data == {"goals": [{"id": "g1"}]}
        assert on_add.call_count == 1

    def test_late_subscriber_replays_failure(self, registry, hooks):
        on_add, _ = hooks
        registry.subscribe({"goals": {}}, lambda r: None)
        registry.handle_error(on_add.call_args[0][0].event_id, ServerError("bad"))

        late = []
        registry.subscribe({"goals": {}}, late.append)
        assert late[0].is_failure

    def test_invalid_payload_raises(self, registry):
        with pytest.raises(InvalidQueryError):
            registry.subscribe({}, lambda r: None)
        assert len(registry) == 0


class TestUnsubscribe:
    def test_idempotent(self, registry, hooks):
        _, on_remove = hooks
        sub = registry.subscribe({"goals": {}}, lambda r: None)
        sub()
        sub()
        sub.cancel()
        assert on_remove.call_count == 1
        assert sub.active is False

    def test_reference_counted(self, registry, hooks):
        on_add, on_remove = hooks
        first, second = [], []
        sub_a = registry.subscribe({"goals": {}}, first.append)
        sub_b = registry.subscribe({"goals": {}}, second.append)
        event_id = on_add.call_args[0][0].event_id

        sub_a()
        assert on_remove.call_count == 0
        assert len(registry) == 1

        registry.handle_result(event_id, {"goals": []})
        assert len(first) == 1  # only the initial Loading
        assert len(second) == 2

        sub_b()
        assert on_remove.call_count == 1
        assert len(registry) == 0

    def test_same_callback_twice_removed_one_at_a_time(self, registry, hooks):
        _, on_remove = hooks
        seen = []
        sub_a = registry.subscribe({"goals": {}}, seen.append)
        registry.subscribe({"goals": {}}, seen.append)
        sub_a()
        assert on_remove.call_count == 0
        assert registry.records()[0].callback_count == 1

    def test_resubscribe_after_teardown_sends_again(self, registry, hooks):
        on_add, _ = hooks
        registry.subscribe({"goals": {}}, lambda r: None)()
        registry.subscribe({"goals": {}}, lambda r: None)
        assert on_add.call_count == 2


class TestHandleResult:
    def test_success_fans_out_in_order(self, registry, hooks):
        on_add, _ = hooks
        order = []
        registry.subscribe({"goals": {}}, lambda r: order.append(("a", r.status)))
        registry.subscribe({"goals": {}}, lambda r: order.append(("b", r.status)))
        registry.handle_result(on_add.call_args[0][0].event_id, {"goals": []})
        assert order[-2:] == [("a", ResultStatus.SUCCESS), ("b", ResultStatus.SUCCESS)]

    def test_unknown_event_ignored(self, registry):
        assert registry.handle_result("nope", {"goals": []}) is False
        assert registry.handle_result(None, {"goals": []}) is False

    def test_raising_callback_does_not_block_others(self, registry, hooks):
        on_add, _ = hooks
        seen = []

        def boom(result):
            if result.is_success:
                raise RuntimeError("boom")

        registry.subscribe({"goals": {}}, boom)
        registry.subscribe({"goals": {}}, seen.append)
        registry.handle_result(on_add.call_args[0][0].event_id, {"goals": []})
        assert seen[-1].is_success

    def test_unsubscribe_during_fan_out(self, registry, hooks):
        on_add, _ = hooks
        seen = []
        subs = {}

        def first(result):
            if result.is_success:
                subs["b"]()

        registry.subscribe({"goals": {}}, first)
        subs["b"] = registry.subscribe({"goals": {}}, seen.append)
        registry.handle_result(on_add.call_args[0][0].event_id, {"goals": []})
        assert [r.status for r in seen] == [ResultStatus.LOADING]

    def test_page_info_attached(self, registry, hooks):
        on_add, _ = hooks
        seen = []
        registry.subscribe({"goals": {}}, seen.append)
        marker = {"goals": object()}
        registry.handle_result(on_add.call_args[0][0].event_id, {"goals": []}, marker)
        assert seen[-1].page_info is marker


class TestHandleRefresh:
    def test_only_matching_subscription_notified(self, registry, attrs, make_blocks):
        goals, todos = [], []
        registry.subscribe({"goals": {}}, goals.append)
        registry.subscribe({"todos": {}}, todos.append)

        notified = registry.handle_refresh(
            [
                _computation(
                    {"goals": {}}, make_blocks([("g1", "attr-title", "Ship v1", 1)])
                ),
                _computation({"stranger": {}}, make_blocks([])),
            ],
            attrs,
        )
        assert notified == 1
        assert goals[-1].data == {"goals": [{"id": "g1", "title": "Ship v1"}]}
        assert len(todos) == 1

    def test_matches_regardless_of_key_order(self, registry, attrs, make_blocks):
        seen = []
        registry.subscribe({"goals": {"$": {"limit": 1, "order": {"title": "asc"}}}}, seen.append)
        registry.handle_refresh(
            [
                _computation(
                    {"goals": {"$": {"order": {"title": "asc"}, "limit": 1}}},
                    make_blocks([]),
                )
            ],
            attrs,
        )
        assert seen[-1].is_success

    def test_unchanged_data_still_notifies(self, registry, attrs, make_blocks):
        seen = []
        registry.subscribe({"goals": {}}, seen.append)
        comp = _computation({"goals": {}}, make_blocks([("g1", "attr-title", "x", 1)]))
        registry.handle_refresh([comp], attrs)
        registry.handle_refresh([comp], attrs)
        assert [r.status for r in seen] == [
            ResultStatus.LOADING,
            ResultStatus.SUCCESS,
            ResultStatus.SUCCESS,
        ]

    def test_malformed_computations_skipped(self, registry, attrs):
        assert registry.handle_refresh(["junk", {"instaql-query": None}], attrs) == 0

    def test_page_info_from_refresh(self, registry, attrs, make_blocks):
        seen = []
        registry.subscribe({"goals": {}}, seen.append)
        blocks = make_blocks([], page_info={"goals": {"has-next-page?": True}})
        registry.handle_refresh([_computation({"goals": {}}, blocks)], attrs)
        assert seen[-1].page_info_for("goals").has_next_page is True

    def test_bad_cursor_fails_only_its_subscription(self, registry, attrs, make_blocks):
        goals, todos = [], []
        registry.subscribe({"goals": {"$": {"first": 1}}}, goals.append)
        registry.subscribe({"todos": {}}, todos.append)

        notified = registry.handle_refresh(
            [
                _computation(
                    {"goals": {"$": {"first": 1}}},
                    make_blocks([], page_info={"goals": {"start-cursor": ["g1", "a"]}}),
                ),
                _computation(
                    {"todos": {}}, make_blocks([("t1", "attr-todo-text", "Write", 1)])
                ),
            ],
            attrs,
        )
        assert notified == 2
        assert goals[-1].is_failure
        assert isinstance(goals[-1].error, DecodingError)
        assert todos[-1].data == {"todos": [{"id": "t1", "text": "Write"}]}


class TestHandleError:
    def test_failure_delivered_and_subscription_kept(self, registry, hooks):
        on_add, _ = hooks
        seen = []
        registry.subscribe({"goals": {}}, seen.append)
        event_id = on_add.call_args[0][0].event_id

        assert registry.handle_error(event_id, ServerError("bad query")) is True
        assert seen[-1].is_failure
        assert str(seen[-1].error) == "bad query"

        registry.handle_result(event_id, {"goals": []})
        assert seen[-1].is_success

    def test_unknown_event(self, registry):
        assert registry.handle_error("nope", ServerError("x")) is False


class TestLookup:
    def test_find_and_contains(self, registry, hooks):
        on_add, _ = hooks
        registry.subscribe({"goals": {}}, lambda r: None)
        record = on_add.call_args[0][0]
        assert registry.find_by_event_id(record.event_id) is record
        assert registry.has_event_id(record.event_id)
        assert record.fingerprint in registry
        assert registry.get(record.fingerprint) is record
