"""Schema capabilities derived from SQLAlchemy mappers.

Mix ``SchemaMixin`` into an imperatively mapped class to expose the contract the
domain layer relies on. Association descriptors are read from the mapper once per
class.
"""

from __future__ import annotations

import typing
from collections.abc import Mapping
from functools import cache
from typing import TYPE_CHECKING, Any, Self

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import RelationshipDirection
from sqlalchemy.orm.instrumentation import manager_of_class

from crudshorts.domain.changeset import cast
from crudshorts.domain.ports.schema import (
    NOT_LOADED,
    AssociationDescriptor,
    Cardinality,
    NotLoaded,
    Relation,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Mapper, RelationshipProperty

    from crudshorts.domain.changeset import Changeset
    from crudshorts.domain.ports.schema import Schema


class SchemaMixin:
    """Default schema contract for mapped classes.

    Subclasses normally override ``changeset`` to cast a narrower set of fields and
    add validations; the default casts every non-key column.
    """

    @classmethod
    def changeset(
        cls, data: Self | Changeset[Self], params: Mapping[str, object]
    ) -> Changeset[Self]:
        return cast(data, params, cls.field_names())

    @classmethod
    def association_descriptor(cls, field: str) -> AssociationDescriptor | None:
        return _descriptors(cls).get(field)

    @classmethod
    def identity_key(cls) -> str:
        mapper = _mapper(cls)
        return mapper.get_property_by_column(mapper.primary_key[0]).key

    @classmethod
    def identity(cls, entity: Self) -> object | None:
        return getattr(entity, cls.identity_key(), None)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(
            prop.key
            for prop in _mapper(cls).column_attrs
            if not any(column.primary_key for column in prop.columns)
        )

    @classmethod
    def field_type(cls, field: str) -> type | None:
        column_attrs = _mapper(cls).column_attrs
        if field not in column_attrs:
            return None
        column = column_attrs[field].columns[0]
        try:
            return column.type.python_type
        except NotImplementedError:
            return None

    @classmethod
    def template(cls) -> Self:
        manager = manager_of_class(cls)
        return typing.cast("Self", manager.new_instance())

    @classmethod
    def is_persisted(cls, entity: Self) -> bool:
        return sa_inspect(entity).has_identity

    @classmethod
    def loaded_value(cls, entity: Self, field: str) -> object | NotLoaded:
        state = sa_inspect(entity)
        if state.has_identity and field in state.unloaded:
            return NOT_LOADED
        return getattr(entity, field)


def _mapper(cls: type[object]) -> Mapper[Any]:
    return sa_inspect(cls)


@cache
def _descriptors(cls: type[object]) -> dict[str, AssociationDescriptor]:
    return {
        relationship.key: _describe(relationship)
        for relationship in _mapper(cls).relationships
    }


def _describe(relationship: RelationshipProperty[Any]) -> AssociationDescriptor:
    if relationship.direction is RelationshipDirection.MANYTOONE:
        relation = Relation.BELONGS_TO
    elif relationship.direction is RelationshipDirection.MANYTOMANY:
        relation = Relation.MANY_TO_MANY
    else:
        relation = Relation.HAS_MANY if relationship.uselist else Relation.HAS_ONE
    return AssociationDescriptor(
        field=relationship.key,
        cardinality=Cardinality.MANY if relationship.uselist else Cardinality.ONE,
        target=typing.cast("type[Schema]", relationship.mapper.class_),
        relation=relation,
        read_only=relationship.viewonly,
    )
