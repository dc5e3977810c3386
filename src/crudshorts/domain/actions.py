"""CRUD actions over queryable references.

Every action resolves its backend from an explicit ``BackendConfig``: writes go to
the primary backend, reads prefer the replica. Expected failures are returned as
``Err`` values; misconfiguration and association misuse raise.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from crudshorts.config.backends import UNSET

from . import batch, operations
from .changeset import Changeset
from .errors import ConstraintViolation, NotFound
from .ports.persistence import AggregateOp
from .queryable import Queryable, resolve, to_query
from .result import Err, Ok, Result

if TYPE_CHECKING:
    from crudshorts.config.backends import BackendConfig, BackendOverride

    from .builder import ChangesetHook
    from .ports.persistence import PersistenceBackend

log = logging.getLogger(__name__)


class Actions:
    """CRUD entry points bound to a backend configuration."""

    def __init__(self, config: BackendConfig) -> None:
        self.config = config

    def get(
        self,
        ref: Queryable,
        identity: object,
        *,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Any | None:
        backend = self.config.reader(repo, replica)
        return backend.get_by_id(to_query(ref, backend), identity)

    def all(
        self,
        ref: Queryable,
        params: Mapping[str, object] | None = None,
        *,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> list[Any]:
        backend = self.config.reader(repo, replica)
        query = operations.filtered_query(
            backend, ref, params, order_by=order_by, group_by=group_by
        )
        return backend.query_all(query)

    def find(
        self,
        ref: Queryable,
        params: Mapping[str, object],
        *,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, NotFound]:
        backend = self.config.reader(repo, replica)
        return operations.find_one(backend, ref, params, order_by=order_by, group_by=group_by)

    def create(
        self,
        ref: Queryable,
        params: Mapping[str, object] | None = None,
        *,
        changeset: ChangesetHook | None = None,
        repo: BackendOverride = UNSET,
    ) -> Result[Any, Changeset[Any]]:
        return operations.insert(self.config.primary(repo), ref, params, changeset)

    def update(
        self,
        ref: Queryable,
        target: object,
        params: Mapping[str, object],
        *,
        changeset: ChangesetHook | None = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, Changeset[Any] | NotFound]:
        """Update ``target``, an entity of ``ref`` or the identity of one."""

        backend = self.config.primary(repo)
        source, schema = resolve(ref, backend=backend)
        if isinstance(target, schema):
            entity: object | None = target
        else:
            entity = self.get(ref, target, repo=repo, replica=replica)
        if entity is None:
            return Err(
                NotFound(
                    message=f"No item found with id: {target}",
                    details={"query": ref, "find_params": {schema.identity_key(): target}},
                )
            )
        return operations.update(backend, entity, params, changeset, source=source)

    def delete(
        self,
        target: object,
        *,
        changeset: ChangesetHook | None = None,
        repo: BackendOverride = UNSET,
    ) -> Result[Any, ConstraintViolation | list[ConstraintViolation]]:
        """Delete an entity, a changeset, or each item of a list of them.

        A list is only ``Ok`` when every item was deleted; every item is attempted.
        """

        if isinstance(target, list):
            items = [self.delete(item, changeset=changeset, repo=repo) for item in target]
            return _collect(items)
        return self._delete_one(self.config.primary(repo), target, changeset)

    def delete_by(
        self,
        ref: Queryable,
        target: object,
        *,
        changeset: ChangesetHook | None = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, Any]:
        """Delete rows of ``ref`` found by identity, by params, or by a list of either."""

        if isinstance(target, list):
            items = [
                self.delete_by(ref, item, changeset=changeset, repo=repo, replica=replica)
                for item in target
            ]
            return _collect(items)

        backend = self.config.primary(repo)
        source, schema = resolve(ref, backend=backend)
        if isinstance(target, Mapping):
            found = self.find(ref, target, repo=repo, replica=replica)
            if isinstance(found, Err):
                return found
            entity = found.value
        else:
            entity = self.get(ref, target, repo=repo, replica=replica)
            if entity is None:
                return Err(
                    NotFound(
                        message=f"No item found with id: {target}",
                        details={"query": ref, "find_params": {schema.identity_key(): target}},
                    )
                )
        return self._delete_one(backend, entity, changeset, source=source)

    def stream(
        self,
        ref: Queryable,
        params: Mapping[str, object] | None = None,
        *,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Iterator[Any]:
        backend = self.config.reader(repo, replica)
        return backend.stream(operations.filtered_query(backend, ref, params))

    def aggregate(
        self,
        ref: Queryable,
        params: Mapping[str, object] | None,
        op: AggregateOp | str,
        field: str,
        *,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Any:
        backend = self.config.reader(repo, replica)
        query = operations.filtered_query(backend, ref, params)
        return backend.aggregate(query, AggregateOp(op), field)

    def transaction[T, E](
        self,
        work: Callable[[Actions], Result[T, E] | T],
        *,
        rollback_on_error: bool = True,
        repo: BackendOverride = UNSET,
    ) -> Result[T, E]:
        """Run ``work`` with actions bound to one transaction.

        ``work`` receives an ``Actions`` whose reads and writes share the transaction.
        Plain return values are wrapped in ``Ok``; an ``Err`` rolls the transaction
        back unless ``rollback_on_error`` is false.
        """

        def run(bound: PersistenceBackend) -> Result[T, E]:
            outcome = work(Actions(self.config.bind(bound)))
            if isinstance(outcome, Ok | Err):
                return outcome  # type: ignore[return-value]
            return Ok(outcome)

        return self.config.primary(repo).transaction(run, rollback_on_error=rollback_on_error)

    def find_or_create(
        self,
        ref: Queryable,
        params: Mapping[str, object],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, Changeset[Any]]:
        match self.find(
            ref, params, order_by=order_by, group_by=group_by, repo=repo, replica=replica
        ):
            case Ok() as found:
                return found
            case _:
                return operations.insert(self.config.primary(repo), ref, params, changeset)

    def find_and_update(
        self,
        ref: Queryable,
        params: Mapping[str, object],
        update_params: Mapping[str, object],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, Changeset[Any] | NotFound]:
        backend = self.config.primary(repo)
        match self.find(
            ref, params, order_by=order_by, group_by=group_by, repo=repo, replica=replica
        ):
            case Ok(entity):
                source = resolve(ref, backend=backend)[0]
                return operations.update(backend, entity, update_params, changeset, source=source)
            case not_found:
                return not_found

    def find_and_upsert(
        self,
        ref: Queryable,
        params: Mapping[str, object],
        upsert_params: Mapping[str, object],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
        replica: BackendOverride = UNSET,
    ) -> Result[Any, Changeset[Any]]:
        backend = self.config.primary(repo)
        match self.find(
            ref, params, order_by=order_by, group_by=group_by, repo=repo, replica=replica
        ):
            case Ok(entity):
                source = resolve(ref, backend=backend)[0]
                return operations.update(backend, entity, upsert_params, changeset, source=source)
            case _:
                merged = {**params, **upsert_params}
                return operations.insert(backend, ref, merged, changeset)

    def find_or_create_many(
        self,
        ref: Queryable,
        params_list: Sequence[Mapping[str, object]],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
    ) -> Result[dict[int, Any], Any]:
        return batch.find_or_create_many(
            self.config.primary(repo),
            ref,
            params_list,
            changeset,
            order_by=order_by,
            group_by=group_by,
        )

    def find_and_update_many(
        self,
        ref: Queryable,
        pairs: Sequence[tuple[Mapping[str, object], Mapping[str, object]]],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
    ) -> Result[dict[int, Any], Any]:
        return batch.find_and_update_many(
            self.config.primary(repo),
            ref,
            pairs,
            changeset,
            order_by=order_by,
            group_by=group_by,
        )

    def find_and_upsert_many(
        self,
        ref: Queryable,
        pairs: Sequence[tuple[Mapping[str, object], Mapping[str, object]]],
        *,
        changeset: ChangesetHook | None = None,
        order_by: object = None,
        group_by: object = None,
        repo: BackendOverride = UNSET,
    ) -> Result[dict[int, Any], Any]:
        return batch.find_and_upsert_many(
            self.config.primary(repo),
            ref,
            pairs,
            changeset,
            order_by=order_by,
            group_by=group_by,
        )

    def _delete_one(
        self,
        backend: PersistenceBackend,
        target: object,
        hook: ChangesetHook | None,
        *,
        source: str | None = None,
    ) -> Result[Any, ConstraintViolation]:
        match operations.delete(backend, target, hook, source=source):
            case Ok() as deleted:
                return deleted
            case Err(failed):
                log.debug("Delete of %r rejected: %s", failed.data, failed.errors)
                return Err(
                    ConstraintViolation(
                        message="failed to delete record",
                        changeset=failed,
                        entity=failed.data,
                        schema=type(failed.data),
                    )
                )


def _collect(results: list[Result[Any, Any]]) -> Result[list[Any], list[Any]]:
    errors = [result.error for result in results if isinstance(result, Err)]
    if errors:
        return Err(errors)
    return Ok([result.value for result in results if isinstance(result, Ok)])
