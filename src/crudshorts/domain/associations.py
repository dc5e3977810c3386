"""Reconcile nested association params against the current state of an entity.

The shape of the raw fragment under an association key decides what happens to
the association:

- already loaded entities replace it outright
- maps holding only an identity select existing rows by membership
- maps mixing identities and plain maps are merged against the fetched rows
- plain maps are inserted

The cardinality declared on the schema picks the table of rules, never the shape.
"""

from __future__ import annotations

import logging
import typing
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

from .changeset import (
    add_error,
    cast_assoc,
    current_value,
    get_field,
    identity_token,
    put_assoc,
    validate_required,
    writable_descriptor,
)
from .errors import AssociationNotFoundError, CardinalityMismatchError
from .ports.schema import NOT_LOADED, AssociationDescriptor, Cardinality

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .changeset import Changeset
    from .ports.persistence import PersistenceBackend
    from .ports.schema import Schema

log = logging.getLogger(__name__)


class FragmentKind(StrEnum):
    ABSENT = "absent"
    LOADED = "loaded"
    IDENTITY_ONLY = "identity_only"
    MIXED_IDENTITY = "mixed_identity"
    PLAIN_INSERT = "plain_insert"


@dataclass(frozen=True, slots=True)
class Absent:
    """No value (or ``None``) was given for the association."""

    kind: Literal[FragmentKind.ABSENT] = FragmentKind.ABSENT


@dataclass(frozen=True, slots=True, kw_only=True)
class LoadedEntityOrList:
    """Every element is a persisted instance of the target type."""

    entities: tuple[object, ...]
    single: bool
    kind: Literal[FragmentKind.LOADED] = FragmentKind.LOADED


@dataclass(frozen=True, slots=True, kw_only=True)
class IdentityOnlyList:
    """Every element is a map whose only key is the identity key."""

    ids: tuple[object, ...]
    single: bool
    kind: Literal[FragmentKind.IDENTITY_ONLY] = FragmentKind.IDENTITY_ONLY


@dataclass(frozen=True, slots=True, kw_only=True)
class MixedIdentityList:
    """Some elements carry an identity alongside other fields."""

    ids: tuple[object, ...]
    elements: tuple[object, ...]
    single: bool
    kind: Literal[FragmentKind.MIXED_IDENTITY] = FragmentKind.MIXED_IDENTITY


@dataclass(frozen=True, slots=True, kw_only=True)
class PlainNestedInsert:
    """No element carries an identity."""

    elements: tuple[object, ...]
    single: bool
    kind: Literal[FragmentKind.PLAIN_INSERT] = FragmentKind.PLAIN_INSERT


type ClassifiedFragment = (
    Absent | LoadedEntityOrList | IdentityOnlyList | MixedIdentityList | PlainNestedInsert
)


def classify(fragment: object, descriptor: AssociationDescriptor) -> ClassifiedFragment:
    """Classify the raw params of one association field by their shape."""

    if fragment is None:
        return Absent()
    single = not isinstance(fragment, list)
    elements = (fragment,) if single else tuple(typing.cast("list[object]", fragment))
    target = descriptor.target
    key = target.identity_key()

    if all(_is_loaded_entity(element, target) for element in elements):
        return LoadedEntityOrList(entities=elements, single=single)
    if all(_is_identity_only(element, key) for element in elements):
        ids = tuple(_identity_of(element, key) for element in elements)
        return IdentityOnlyList(ids=ids, single=single)
    if any(_carries_identity(element, key) for element in elements):
        ids = tuple(
            _identity_of(element, key) for element in elements if _carries_identity(element, key)
        )
        return MixedIdentityList(ids=ids, elements=elements, single=single)
    return PlainNestedInsert(elements=elements, single=single)


def reconcile_on_change[T](
    changeset: Changeset[T],
    field: str,
    *,
    backend: PersistenceBackend,
    required: bool = False,
    required_when_missing: str | None = None,
) -> Changeset[T]:
    """Preload ``field`` when params mention it, then reconcile it.

    The association is only fetched when the params carry its key and the base
    entity does not hold it yet.
    """

    writable_descriptor(changeset.schema, field)
    if field in (changeset.params or {}):
        _ensure_loaded(changeset, field, backend)
    return put_or_cast_assoc(
        changeset,
        field,
        backend=backend,
        required=required,
        required_when_missing=required_when_missing,
    )


def put_or_cast_assoc[T](
    changeset: Changeset[T],
    field: str,
    *,
    backend: PersistenceBackend,
    required: bool = False,
    required_when_missing: str | None = None,
) -> Changeset[T]:
    """Put or cast association ``field`` depending on the shape of its params.

    ``required_when_missing`` names another field; the association is then required
    only while that field is nil on the changeset.
    """

    if required_when_missing is not None:
        required = changeset_field_nil(changeset, required_when_missing)
    descriptor = writable_descriptor(changeset.schema, field)
    fragment = classify((changeset.params or {}).get(field), descriptor)
    log.debug(
        "Reconciling %s.%s (%s, %s)",
        changeset.schema.__name__,
        field,
        descriptor.cardinality,
        fragment.kind,
    )

    if descriptor.cardinality is Cardinality.MANY:
        _reconcile_many(changeset, descriptor, fragment, backend)
    else:
        _reconcile_one(changeset, descriptor, fragment, backend)

    if required:
        validate_required(changeset, field)
    return changeset


def preload_changeset_assoc[T](
    changeset: Changeset[T],
    field: str,
    *,
    backend: PersistenceBackend,
    ids: Sequence[object] | None = None,
) -> Changeset[T]:
    """Load association ``field`` if it is not loaded yet.

    With ``ids`` the rows with those identities become the current value of the
    association instead, which must then have many cardinality.
    """

    descriptor = changeset.schema.association_descriptor(field)
    if descriptor is None:
        raise AssociationNotFoundError(field=field, schema=changeset.schema)
    if ids is None:
        _ensure_loaded(changeset, field, backend)
        return changeset
    if descriptor.cardinality is not Cardinality.MANY:
        raise CardinalityMismatchError(field=field, schema=changeset.schema)
    changeset.preloaded[field] = _fetch_by_ids(changeset, descriptor, list(ids), backend)
    return changeset


def put_when[T](
    changeset: Changeset[T],
    predicate: Callable[[Changeset[T]], bool],
    change: Callable[[Changeset[T]], Changeset[T]],
) -> Changeset[T]:
    return change(changeset) if predicate(changeset) else changeset


def changeset_field_empty(changeset: Changeset[Any], field: str) -> bool:
    value = get_field(changeset, field)
    return isinstance(value, list) and not value


def changeset_field_nil(changeset: Changeset[Any], field: str) -> bool:
    return get_field(changeset, field) is None


def _reconcile_many(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    fragment: ClassifiedFragment,
    backend: PersistenceBackend,
) -> None:
    field = descriptor.field
    if not isinstance(fragment, Absent) and fragment.single:
        add_error(changeset, field, "is invalid", type="list")
        return

    match fragment:
        case Absent() | PlainNestedInsert():
            cast_assoc(changeset, field)
        case LoadedEntityOrList(entities=entities):
            put_assoc(changeset, field, list(entities))
        case IdentityOnlyList(ids=ids):
            members = _fetch_by_ids(changeset, descriptor, list(ids), backend)
            put_assoc(changeset, field, members)
        case MixedIdentityList(ids=ids):
            fetched = _fetch_by_ids(changeset, descriptor, list(ids), backend)
            changeset.preloaded[field] = _merge_members(
                descriptor.target, current_value(changeset, field), fetched
            )
            cast_assoc(changeset, field)


def _reconcile_one(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    fragment: ClassifiedFragment,
    backend: PersistenceBackend,
) -> None:
    field = descriptor.field
    if not isinstance(fragment, Absent) and not fragment.single:
        add_error(changeset, field, "is invalid", type="map")
        return

    match fragment:
        case Absent() | PlainNestedInsert():
            cast_assoc(changeset, field)
        case LoadedEntityOrList(entities=(entity,)):
            put_assoc(changeset, field, entity)
        case IdentityOnlyList(ids=(identity,)):
            _ensure_loaded(changeset, field, backend)
            reference = _reference(changeset, descriptor, identity, backend)
            if reference is None:
                add_error(changeset, field, "does not exist", validation="assoc_exists")
            else:
                put_assoc(changeset, field, reference)
        case MixedIdentityList():
            _ensure_loaded(changeset, field, backend)
            cast_assoc(changeset, field)
        case _:
            add_error(changeset, field, "is invalid", type="map")


def _ensure_loaded(changeset: Changeset[Any], field: str, backend: PersistenceBackend) -> None:
    if field in changeset.preloaded:
        return
    if changeset.schema.loaded_value(changeset.data, field) is NOT_LOADED:
        log.debug("Preloading %s.%s", changeset.schema.__name__, field)
        backend.preload(changeset.data, field, source=changeset.source)


def _reference(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    identity: object,
    backend: PersistenceBackend,
) -> object | None:
    target = descriptor.target
    current = current_value(changeset, descriptor.field)
    if (
        current is not None
        and current is not NOT_LOADED
        and identity_token(target.identity(current)) == identity_token(identity)
    ):
        return current
    return backend.get_by_id(backend.query(changeset.source, target), identity)


def _fetch_by_ids(
    changeset: Changeset[Any],
    descriptor: AssociationDescriptor,
    ids: list[object],
    backend: PersistenceBackend,
) -> list[object]:
    target = descriptor.target
    if not ids:
        return []
    query = backend.query(changeset.source, target)
    query = backend.filters.apply(query, {target.identity_key(): ids})
    return backend.query_all(query)


def _merge_members(
    target: type[Schema], current: object, fetched: list[object]
) -> list[object]:
    merged = {identity_token(target.identity(member)): member for member in fetched}
    if current is not None and current is not NOT_LOADED:
        for member in current:  # type: ignore[attr-defined]
            merged.setdefault(identity_token(target.identity(member)), member)
    return list(merged.values())


def _is_loaded_entity(element: object, target: type[Schema]) -> bool:
    return isinstance(element, target) and target.is_persisted(element)


def _is_identity_only(element: object, key: str) -> bool:
    return (
        isinstance(element, Mapping)
        and len(element) == 1  # type: ignore[arg-type]
        and _carries_identity(element, key)
    )


def _carries_identity(element: object, key: str) -> bool:
    if isinstance(element, Mapping):
        return element.get(key) is not None  # type: ignore[union-attr]
    return False


def _identity_of(element: object, key: str) -> object:
    return element[key]  # type: ignore[index]
