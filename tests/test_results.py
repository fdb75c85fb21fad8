"""Tests for QueryResult and TypedResult."""

from dataclasses import dataclass

from instant_client.errors import DecodingError, ServerError
from instant_client.pagination import PageInfo
from instant_client.query import TypedQuery
from instant_client.results import QueryResult, ResultStatus, TypedResult


@dataclass
class Goal:
    __namespace__ = "goals"

    id: str
    title: str


@dataclass
class Lookup:
    __namespace__ = "lookups"

    id: str
    kind: str

    def __post_init__(self):
        self.label = {"a": "Alpha"}[self.kind]


class TestQueryResult:
    def test_loading(self):
        result = QueryResult.loading()
        assert result.is_loading
        assert result.data == {}
        assert result.get("goals") == []

    def test_success_helpers(self):
        info = PageInfo(has_next_page=True)
        result = QueryResult.success(
            {"goals": [{"id": "g1"}, {"id": "g2"}]}, {"goals": info}
        )
        assert result.status is ResultStatus.SUCCESS
        assert result.get_first("goals") == {"id": "g1"}
        assert result.get_first("todos") is None
        assert result.page_info_for("goals") is info
        assert result.page_info_for("todos") is None

    def test_failure(self):
        err = ServerError("nope")
        result = QueryResult.failure(err)
        assert result.is_failure
        assert result.error is err
        assert result.page_info_for("goals") is None


class TestTypedResult:
    def test_decodes_entities(self):
        raw = QueryResult.success({"goals": [{"id": "g1", "title": "x"}]})
        typed = TypedResult.from_query_result(raw, TypedQuery.of(Goal))
        assert typed.is_success
        assert typed.data == [Goal("g1", "x")]

    def test_untyped_rows(self):
        raw = QueryResult.success({"goals": [{"id": "g1"}]})
        typed = TypedResult.from_query_result(raw, TypedQuery.of("goals"))
        assert typed.data == [{"id": "g1"}]

    def test_missing_namespace_is_empty(self):
        raw = QueryResult.success({"todos": [{"id": "t1"}]})
        typed = TypedResult.from_query_result(raw, TypedQuery.of(Goal))
        assert typed.is_success
        assert typed.data == []

    def test_page_info_for_own_namespace(self):
        info = PageInfo(has_previous_page=True)
        raw = QueryResult.success({"goals": []}, {"goals": info, "todos": PageInfo()})
        typed = TypedResult.from_query_result(raw, TypedQuery.of(Goal))
        assert typed.page_info is info

    def test_loading_and_failure_pass_through(self):
        query = TypedQuery.of(Goal)
        assert TypedResult.from_query_result(QueryResult.loading(), query).is_loading
        err = ServerError("x")
        failed = TypedResult.from_query_result(QueryResult.failure(err), query)
        assert failed.error is err

    def test_decode_error_becomes_failure(self):
        raw = QueryResult.success({"goals": [{"id": "g1"}]})
        typed = TypedResult.from_query_result(raw, TypedQuery.of(Goal))
        assert typed.is_failure
        assert isinstance(typed.error, DecodingError)

    def test_constructor_exception_becomes_failure(self):
        raw = QueryResult.success({"lookups": [{"id": "l1", "kind": "z"}]})
        typed = TypedResult.from_query_result(raw, TypedQuery.of(Lookup))
        assert typed.is_failure
        assert isinstance(typed.error, DecodingError)
