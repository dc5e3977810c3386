"""Ports for the persistence backend and its filter compiler."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from crudshorts.domain.changeset import Changeset
    from crudshorts.domain.result import Err, Ok, Result


class AggregateOp(StrEnum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


@runtime_checkable
class FilterEngine[TQuery](Protocol):
    """Compiles a filter mapping into predicates on a backend query."""

    def apply(self, query: TQuery, params: Mapping[str, object]) -> TQuery: ...


@runtime_checkable
class PersistenceBackend(Protocol):
    """Capability set the actions need from a relational backend.

    Queries are opaque to the domain; they are produced by ``query`` and refined
    through ``filters``.
    """

    @property
    def filters(self) -> FilterEngine[Any]: ...

    def query(self, source: str | None, schema: type[object]) -> object: ...

    def describe(self, query: object) -> tuple[str | None, type[object]] | None: ...

    def get_by_id(self, query: object, identity: object) -> object | None: ...

    def one(self, query: object) -> object | None: ...

    def query_all(self, query: object) -> list[object]: ...

    def insert[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]: ...

    def update[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]: ...

    def delete[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]: ...

    def preload(self, entity: object, field: str, *, source: str | None = None) -> object: ...

    def transaction[T, E](
        self,
        work: Callable[[PersistenceBackend], Result[T, E]],
        *,
        rollback_on_error: bool = True,
    ) -> Result[T, E]: ...

    def stream(self, query: object) -> Iterator[object]: ...

    def aggregate(self, query: object, op: AggregateOp, field: str) -> object: ...
