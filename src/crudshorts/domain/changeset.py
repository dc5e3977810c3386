"""Change records: proposed mutations of an entity plus their validation state.

A ``Changeset`` never touches the entity it wraps. Field changes, nested association
changes and validation errors accumulate on the changeset until a backend persists
it. The helpers in this module mutate the changeset they receive and return it, so
they can be chained inside a schema's ``changeset`` routine.
"""

from __future__ import annotations

import logging
import typing
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError

from .errors import (
    AssociationNotFoundError,
    AssociationNotLoadedError,
    ReadOnlyAssociationError,
)
from .ports.schema import NOT_LOADED, AssociationDescriptor, Cardinality

if TYPE_CHECKING:
    from .ports.schema import Schema

log = logging.getLogger(__name__)


class Action(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"


class ConstraintKind(StrEnum):
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"
    NO_ASSOC = "no_assoc"


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str
    meta: Mapping[str, object] = field(default_factory=dict)

    def render(self) -> str:
        return self.message.format(**self.meta)


@dataclass(frozen=True, slots=True, kw_only=True)
class Constraint:
    """A database constraint whose violation should become a field error."""

    kind: ConstraintKind
    field: str
    message: str
    name: str | None = None


type AssocChange = Changeset[Any] | list[Changeset[Any]] | None


@dataclass(slots=True, kw_only=True, eq=False)
class Changeset[T]:
    data: T
    params: dict[str, object] | None = None
    changes: dict[str, object] = field(default_factory=dict)
    assoc_changes: dict[str, AssocChange] = field(default_factory=dict)
    errors: list[FieldError] = field(default_factory=list)
    action: Action | None = None
    constraints: list[Constraint] = field(default_factory=list)
    required: list[str] = field(default_factory=list)
    preloaded: dict[str, object] = field(default_factory=dict)
    source: str | None = None

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def schema(self) -> type[Schema]:
        return typing.cast("type[Schema]", type(self.data))

    def errors_on(self, name: str) -> list[str]:
        return [error.render() for error in self.errors if error.field == name]


def change[T](data: T | Changeset[T], changes: Mapping[str, object] | None = None) -> Changeset[T]:
    changeset = _as_changeset(data)
    for name, value in (changes or {}).items():
        put_change(changeset, name, value)
    return changeset


def cast[T](
    data: T | Changeset[T],
    params: Mapping[str, object] | None,
    permitted: Sequence[str],
) -> Changeset[T]:
    """Copy permitted keys of ``params`` into changes, coercing them to column types."""

    changeset = _as_changeset(data)
    incoming = {str(key): value for key, value in (params or {}).items()}
    changeset.params = {**(changeset.params or {}), **incoming}
    schema = changeset.schema
    for name in permitted:
        if name not in incoming:
            continue
        try:
            value = _coerce(schema, name, incoming[name])
        except ValidationError:
            add_error(changeset, name, "is invalid", validation="cast")
            continue
        put_change(changeset, name, value)
    return changeset


def put_change[T](changeset: Changeset[T], name: str, value: object) -> Changeset[T]:
    if changeset.schema.association_descriptor(name) is not None:
        return put_assoc(changeset, name, value)
    if value == changeset.schema.loaded_value(changeset.data, name):
        changeset.changes.pop(name, None)
    else:
        changeset.changes[name] = value
    return changeset


def get_change(changeset: Changeset[Any], name: str, default: object = None) -> object:
    if name in changeset.assoc_changes:
        return changeset.assoc_changes[name]
    return changeset.changes.get(name, default)


def get_field(changeset: Changeset[Any], name: str) -> object:
    """Return the pending value of ``name``, falling back to the base entity.

    Associations resolve to the entities that would remain associated after the
    changeset is applied. Unloaded associations return ``NOT_LOADED``.
    """

    if name in changeset.changes:
        return changeset.changes[name]
    if name in changeset.assoc_changes:
        pending = changeset.assoc_changes[name]
        if pending is None:
            return None
        if isinstance(pending, Changeset):
            return None if _is_removal(pending) else pending.data
        return [child.data for child in pending if not _is_removal(child)]
    return current_value(changeset, name)


def current_value(changeset: Changeset[Any], name: str) -> object:
    """Value of ``name`` before any pending change, honouring injected preloads."""

    if name in changeset.preloaded:
        return changeset.preloaded[name]
    return changeset.schema.loaded_value(changeset.data, name)


def add_error[T](changeset: Changeset[T], name: str, message: str, **meta: object) -> Changeset[T]:
    changeset.errors.append(FieldError(name, message, meta))
    return changeset


def validate_required[T](changeset: Changeset[T], names: str | Sequence[str]) -> Changeset[T]:
    for name in [names] if isinstance(names, str) else names:
        if name not in changeset.required:
            changeset.required.append(name)
        if _is_blank(get_field(changeset, name)):
            add_error(changeset, name, "can't be blank", validation="required")
    return changeset


def validate_length[T](
    changeset: Changeset[T],
    name: str,
    *,
    min: int | None = None,  # noqa: A002
    max: int | None = None,  # noqa: A002
    is_: int | None = None,
) -> Changeset[T]:
    value = changeset.changes.get(name)
    if value is None or not hasattr(value, "__len__"):
        return changeset
    length = len(typing.cast("Sequence[object]", value))
    unit = "character(s)" if isinstance(value, str) else "item(s)"
    verb = "should be" if isinstance(value, str) else "should have"
    if is_ is not None and length != is_:
        add_error(changeset, name, f"{verb} {{count}} {unit}", count=is_, validation="length")
    elif min is not None and length < min:
        add_error(
            changeset, name, f"{verb} at least {{count}} {unit}", count=min, validation="length"
        )
    elif max is not None and length > max:
        add_error(
            changeset, name, f"{verb} at most {{count}} {unit}", count=max, validation="length"
        )
    return changeset


def unique_constraint[T](
    changeset: Changeset[T],
    name: str,
    *,
    constraint_name: str | None = None,
    message: str = "has already been taken",
) -> Changeset[T]:
    changeset.constraints.append(
        Constraint(kind=ConstraintKind.UNIQUE, field=name, name=constraint_name, message=message)
    )
    return changeset


def foreign_key_constraint[T](
    changeset: Changeset[T],
    name: str,
    *,
    constraint_name: str | None = None,
    message: str = "does not exist",
) -> Changeset[T]:
    changeset.constraints.append(
        Constraint(
            kind=ConstraintKind.FOREIGN_KEY, field=name, name=constraint_name, message=message
        )
    )
    return changeset


def no_assoc_constraint[T](
    changeset: Changeset[T],
    name: str,
    *,
    constraint_name: str | None = None,
    message: str | None = None,
) -> Changeset[T]:
    """Turn a delete blocked by rows of association ``name`` into an error."""

    descriptor = _descriptor(changeset.schema, name)
    if message is None:
        message = (
            "are still associated with this entry"
            if descriptor.cardinality is Cardinality.MANY
            else "is still associated with this entry"
        )
    changeset.constraints.append(
        Constraint(kind=ConstraintKind.NO_ASSOC, field=name, name=constraint_name, message=message)
    )
    return changeset


def put_assoc[T](changeset: Changeset[T], name: str, value: object) -> Changeset[T]:
    """Replace association ``name`` with ``value`` (entities, changesets or params)."""

    descriptor = writable_descriptor(changeset.schema, name)
    if descriptor.cardinality is Cardinality.MANY:
        if not isinstance(value, list):
            return add_error(changeset, name, "is invalid", type="list")
        elements = typing.cast("list[object]", value)
        _put_many(changeset, descriptor, elements, current_list(changeset, name))
    else:
        _put_one(changeset, descriptor, value, current_value(changeset, name))
    return changeset


def cast_assoc[T](
    changeset: Changeset[T],
    name: str,
    *,
    required: bool = False,
) -> Changeset[T]:
    """Reconcile association ``name`` against the nested params under the same key.

    Nested maps whose identity matches a current member become updates, the rest
    become inserts and current members left out become removals.
    """

    descriptor = writable_descriptor(changeset.schema, name)
    params = changeset.params or {}
    if name in params:
        value = params[name]
        if descriptor.cardinality is Cardinality.MANY:
            if isinstance(value, list):
                elements = typing.cast("list[object]", value)
                _put_many(changeset, descriptor, elements, current_list(changeset, name))
            else:
                add_error(changeset, name, "is invalid", type="list")
        elif isinstance(value, list):
            add_error(changeset, name, "is invalid", type="map")
        else:
            _put_one(changeset, descriptor, value, current_value(changeset, name))
    if required:
        validate_required(changeset, name)
    return changeset


def current_list(changeset: Changeset[Any], name: str) -> list[object]:
    current = current_value(changeset, name)
    if current is NOT_LOADED:
        raise AssociationNotLoadedError(field=name, schema=changeset.schema)
    return list(typing.cast("list[object]", current or []))


def traverse_errors(changeset: Changeset[Any]) -> dict[str, object]:
    """Render errors into a nested mapping keyed by field name."""

    rendered: dict[str, object] = {}
    for error in changeset.errors:
        if error.meta.get("validation") == "assoc":
            continue
        messages = typing.cast("list[str]", rendered.setdefault(error.field, []))
        messages.append(error.render())
    for name, pending in changeset.assoc_changes.items():
        if isinstance(pending, Changeset) and not pending.valid:
            rendered[name] = traverse_errors(pending)
        elif isinstance(pending, list) and any(not child.valid for child in pending):
            kept = [child for child in pending if not _is_removal(child)]
            rendered[name] = [traverse_errors(child) for child in kept]
    return rendered


def writable_descriptor(schema: type[Schema], name: str) -> AssociationDescriptor:
    descriptor = _descriptor(schema, name)
    if descriptor.read_only:
        raise ReadOnlyAssociationError(field=name, schema=schema)
    return descriptor


def identity_token(value: object) -> str | None:
    return None if value is None else str(value)


def _descriptor(schema: type[Schema], name: str) -> AssociationDescriptor:
    descriptor = schema.association_descriptor(name)
    if descriptor is None:
        raise AssociationNotFoundError(field=name, schema=schema)
    return descriptor


def _put_many(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    elements: list[object],
    base: list[object],
) -> None:
    target = descriptor.target
    by_identity = {identity_token(target.identity(member)): member for member in base}
    kept: set[str | None] = set()
    children: list[Changeset[Any]] = []
    for element in elements:
        child = _child_changeset(descriptor, element, by_identity)
        if child is None:
            add_error(changeset, descriptor.field, "is invalid", type="list")
            return
        if child.action is Action.UPDATE:
            kept.add(identity_token(target.identity(child.data)))
        children.append(child)
    removal = Action.DELETE if descriptor.owns_target else Action.REPLACE
    children.extend(
        Changeset(data=member, action=removal)
        for token, member in by_identity.items()
        if token not in kept
    )
    log.debug(
        "Reconciled %s.%s into %d nested changesets",
        changeset.schema.__name__,
        descriptor.field,
        len(children),
    )
    changeset.assoc_changes[descriptor.field] = children
    _flag_invalid_children(changeset, descriptor.field, children)


def _put_one(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    value: object,
    current: object,
) -> None:
    if value is None:
        changeset.assoc_changes[descriptor.field] = None
        return
    existing: dict[str | None, object] = {}
    if current is not None and current is not NOT_LOADED:
        existing[identity_token(descriptor.target.identity(current))] = current
    child = _child_changeset(descriptor, value, existing)
    if child is None:
        add_error(changeset, descriptor.field, "is invalid", type="map")
        return
    changeset.assoc_changes[descriptor.field] = child
    _flag_invalid_children(changeset, descriptor.field, [child])


def _child_changeset(
    descriptor: AssociationDescriptor,
    element: object,
    by_identity: Mapping[str | None, object],
) -> Changeset[Any] | None:
    target = descriptor.target
    if isinstance(element, Changeset):
        child = typing.cast("Changeset[Any]", element)
        if child.action is None:
            child.action = Action.UPDATE if target.is_persisted(child.data) else Action.INSERT
        return child
    if isinstance(element, target):
        action = Action.UPDATE if target.is_persisted(element) else Action.INSERT
        return Changeset(data=element, action=action)
    if isinstance(element, Mapping):
        params = typing.cast("Mapping[str, object]", element)
        token = identity_token(params.get(target.identity_key()))
        existing = by_identity.get(token) if token is not None else None
        if existing is not None:
            child = target.changeset(existing, params)
            child.action = Action.UPDATE
        else:
            child = target.changeset(target.template(), params)
            child.action = Action.INSERT
        return child
    return None


def _flag_invalid_children(
    changeset: Changeset[Any], name: str, children: list[Changeset[Any]]
) -> None:
    if any(not child.valid for child in children):
        add_error(changeset, name, "is invalid", validation="assoc")


def _is_removal(changeset: Changeset[Any]) -> bool:
    return changeset.action in {Action.DELETE, Action.REPLACE}


def _is_blank(value: object) -> bool:
    if value is None or value is NOT_LOADED:
        return True
    if isinstance(value, str):
        return not value.strip()
    return isinstance(value, list) and not value


def _as_changeset[T](data: T | Changeset[T]) -> Changeset[T]:
    if isinstance(data, Changeset):
        return typing.cast("Changeset[T]", data)
    return Changeset(data=data)


def _coerce(schema: type[Schema], name: str, value: object) -> object:
    if value is None:
        return None
    field_type = schema.field_type(name)
    if field_type is None:
        return value
    return _type_adapter(field_type).validate_python(value)


@cache
def _type_adapter(field_type: type) -> TypeAdapter[Any]:
    return TypeAdapter(field_type)
