"""Normalise the accepted forms of a queryable reference.

Callers may pass a mapped class, a ``(source, class)`` pair, a query built by the
backend, or one of the reference dataclasses below. Everything downstream works
on the canonical ``(source, schema)`` pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .ports.persistence import PersistenceBackend
    from .ports.schema import Schema


@dataclass(frozen=True, slots=True)
class Bare:
    schema: type[Schema]


@dataclass(frozen=True, slots=True)
class SourceOverride:
    """A schema read from and written to another storage source."""

    source: str | None
    schema: type[Schema]


@dataclass(frozen=True, slots=True)
class PrebuiltQuery:
    query: object


type QueryableRef = Bare | SourceOverride | PrebuiltQuery
type Queryable = QueryableRef | type[Any] | tuple[str | None, type[Any]] | object


def as_reference(ref: Queryable) -> QueryableRef:
    match ref:
        case Bare() | SourceOverride() | PrebuiltQuery():
            return ref
        case type():
            return Bare(ref)
        case (str() | None as source, type() as schema):
            return SourceOverride(source, schema)
        case _:
            return PrebuiltQuery(ref)


def resolve(
    ref: Queryable, *, backend: PersistenceBackend | None = None
) -> tuple[str | None, type[Schema]]:
    """Return the ``(source, schema)`` pair behind ``ref``.

    Prebuilt queries can only be described by the backend that built them.
    """

    match as_reference(ref):
        case Bare(schema):
            return None, schema
        case SourceOverride(source, schema):
            return source, schema
        case PrebuiltQuery(query):
            described = backend.describe(query) if backend is not None else None
            if described is None:
                raise TypeError(f"Cannot resolve a schema from queryable {query!r}")
            source, schema = described
            return source, schema  # type: ignore[return-value]


def schema_of(ref: Queryable, *, backend: PersistenceBackend | None = None) -> type[Schema]:
    return resolve(ref, backend=backend)[1]


def template(ref: Queryable, *, backend: PersistenceBackend | None = None) -> Any:
    """Return a fresh, never persisted instance to build inserts on."""

    return schema_of(ref, backend=backend).template()


def with_source(
    ref: Queryable, source: str | None, *, backend: PersistenceBackend | None = None
) -> SourceOverride:
    return SourceOverride(source, schema_of(ref, backend=backend))


def to_query(ref: Queryable, backend: PersistenceBackend) -> object:
    match as_reference(ref):
        case Bare(schema):
            return backend.query(None, schema)
        case SourceOverride(source, schema):
            return backend.query(source, schema)
        case PrebuiltQuery(query):
            return query
