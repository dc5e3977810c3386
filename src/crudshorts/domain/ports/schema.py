"""Contract every persisted type exposes to the domain layer."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Final, Protocol, Self, runtime_checkable

if TYPE_CHECKING:
    from crudshorts.domain.changeset import Changeset


class _NotLoaded(Enum):
    NOT_LOADED = "not_loaded"

    def __repr__(self) -> str:
        return "NOT_LOADED"


NOT_LOADED: Final = _NotLoaded.NOT_LOADED
"""Value of an association that has not been fetched from the backend."""

type NotLoaded = _NotLoaded


class Cardinality(StrEnum):
    ONE = "one"
    MANY = "many"


class Relation(StrEnum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True, slots=True, kw_only=True)
class AssociationDescriptor:
    """Static metadata about one relation field."""

    field: str
    cardinality: Cardinality
    target: type[Schema]
    relation: Relation
    read_only: bool = False

    @property
    def owns_target(self) -> bool:
        """Whether the foreign key lives on the target rows."""

        return self.relation in {Relation.HAS_ONE, Relation.HAS_MANY}


@runtime_checkable
class Schema(Protocol):
    """Capabilities the core needs from a persisted type."""

    @classmethod
    def changeset(
        cls, data: Self | Changeset[Self], params: Mapping[str, object]
    ) -> Changeset[Self]: ...

    @classmethod
    def association_descriptor(cls, field: str) -> AssociationDescriptor | None: ...

    @classmethod
    def identity_key(cls) -> str: ...

    @classmethod
    def identity(cls, entity: Self) -> object | None: ...

    @classmethod
    def field_names(cls) -> tuple[str, ...]: ...

    @classmethod
    def field_type(cls, field: str) -> type | None: ...

    @classmethod
    def template(cls) -> Self: ...

    @classmethod
    def is_persisted(cls, entity: Self) -> bool: ...

    @classmethod
    def loaded_value(cls, entity: Self, field: str) -> object | NotLoaded: ...
