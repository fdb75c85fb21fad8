# =============================================================================
# Instant Python Client -- Query Results
# =============================================================================
#
# Every subscriber callback receives one of three states:
#   Loading -> Success(data, page_info) | Failure(error)
# A Failure is not an unsubscribe; a later Success may follow.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ._logging import logger
from .entity import decode_entities
from .errors import DecodingError
from .pagination import PageInfo

if TYPE_CHECKING:
    from .query import TypedQuery

T = TypeVar("T")


class ResultStatus(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class QueryResult:
    """Untyped result of a query subscription.

    Attributes:
        status: Loading, success or failure.
        data: ``{namespace: [entity_dict, ...]}``; empty unless success.
        page_info: Page info per namespace for ``first``/``last`` queries.
        error: The failure cause when ``status`` is FAILURE.
    """

    status: ResultStatus
    data: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    page_info: dict[str, PageInfo] | None = None
    error: Exception | None = None

    @classmethod
    def loading(cls) -> QueryResult:
        return cls(ResultStatus.LOADING)

    @classmethod
    def success(
        cls,
        data: dict[str, list[dict[str, Any]]],
        page_info: dict[str, PageInfo] | None = None,
    ) -> QueryResult:
        return cls(ResultStatus.SUCCESS, data=data, page_info=page_info)

    @classmethod
    def failure(cls, error: Exception) -> QueryResult:
        return cls(ResultStatus.FAILURE, error=error)

    @property
    def is_loading(self) -> bool:
        return self.status is ResultStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status is ResultStatus.FAILURE

    def get(self, namespace: str) -> list[dict[str, Any]]:
        """Entities for *namespace*; empty list when absent."""
        return self.data.get(namespace, [])

    def get_first(self, namespace: str) -> dict[str, Any] | None:
        rows = self.get(namespace)
        return rows[0] if rows else None

    def page_info_for(self, namespace: str) -> PageInfo | None:
        if not self.page_info:
            return None
        return self.page_info.get(namespace)


@dataclass(frozen=True)
class TypedResult(Generic[T]):
    """Result decoded into the entity type of a :class:`TypedQuery`.

    ``data`` holds rows as dicts when the query has no entity type.
    """

    status: ResultStatus
    data: list[T] = field(default_factory=list)
    page_info: PageInfo | None = None
    error: Exception | None = None

    @classmethod
    def loading(cls) -> TypedResult[T]:
        return cls(ResultStatus.LOADING)

    @classmethod
    def success(cls, data: list[T], page_info: PageInfo | None = None) -> TypedResult[T]:
        return cls(ResultStatus.SUCCESS, data=data, page_info=page_info)

    @classmethod
    def failure(cls, error: Exception) -> TypedResult[T]:
        return cls(ResultStatus.FAILURE, error=error)

    @property
    def is_loading(self) -> bool:
        return self.status is ResultStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status is ResultStatus.FAILURE

    @classmethod
    def from_query_result(
        cls, result: QueryResult, query: TypedQuery[T]
    ) -> TypedResult[T]:
        """Decode *result* for *query*'s namespace and entity type.

        Decode problems come back as a Failure instead of raising into the
        subscriber callback.
        """
        if result.is_loading:
            return cls.loading()
        if result.is_failure:
            return cls.failure(result.error or DecodingError("unknown failure"))

        rows = result.get(query.namespace)
        try:
            data = (
                decode_entities(query.entity, rows)
                if query.entity is not None
                else list(rows)
            )
        except (DecodingError, TypeError) as exc:
            logger.warning("Failed to decode %s: %s", query.namespace, exc)
            error = exc if isinstance(exc, DecodingError) else DecodingError(str(exc))
            return cls.failure(error)
        return cls.success(data, result.page_info_for(query.namespace))
