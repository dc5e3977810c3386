"""Lookup and write primitives shared by actions and batches."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .builder import build
from .changeset import Action, Changeset
from .errors import NotFound
from .queryable import Queryable, as_reference, resolve, to_query
from .result import Err, Ok

if TYPE_CHECKING:
    from .builder import ChangesetHook
    from .ports.persistence import PersistenceBackend

log = logging.getLogger(__name__)

ORDERING_KEYS = ("order_by", "group_by")


def filtered_query(
    backend: PersistenceBackend,
    ref: Queryable,
    params: Mapping[str, object] | None,
    **ordering: object,
) -> object:
    query = to_query(ref, backend)
    filters = {**(params or {}), **{k: v for k, v in ordering.items() if v is not None}}
    if not filters:
        return query
    return backend.filters.apply(query, filters)


def find_one(
    backend: PersistenceBackend,
    ref: Queryable,
    params: Mapping[str, object],
    **ordering: object,
) -> Ok[Any] | Err[NotFound]:
    """Fetch the single row matching ``params``; empty params never hit the backend."""

    not_found = NotFound(details={"query": ref, "params": params})
    if not params:
        return Err(not_found)
    entity = backend.one(filtered_query(backend, ref, params, **ordering))
    if entity is None:
        log.debug("No %s matched %r", resolve(ref, backend=backend)[1].__name__, params)
        return Err(not_found)
    return Ok(entity)


def insert(
    backend: PersistenceBackend,
    ref: Queryable,
    params: Mapping[str, object] | None,
    hook: ChangesetHook | None = None,
) -> Ok[Any] | Err[Changeset[Any]]:
    changeset = build(as_reference(ref), params, hook, backend=backend)
    changeset.action = Action.INSERT
    return backend.insert(changeset)


def update(
    backend: PersistenceBackend,
    entity: object,
    params: Mapping[str, object] | None,
    hook: ChangesetHook | None = None,
    *,
    source: str | None = None,
) -> Ok[Any] | Err[Changeset[Any]]:
    changeset = build(entity, params, hook, backend=backend)
    if source is not None:
        changeset.source = source
    changeset.action = Action.UPDATE
    return backend.update(changeset)


def delete(
    backend: PersistenceBackend,
    target: object,
    hook: ChangesetHook | None = None,
    *,
    source: str | None = None,
) -> Ok[Any] | Err[Changeset[Any]]:
    changeset = build(target, {}, hook, backend=backend)
    if source is not None:
        changeset.source = source
    changeset.action = Action.DELETE
    return backend.delete(changeset)
