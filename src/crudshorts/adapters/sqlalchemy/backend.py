"""Persistence backend over SQLAlchemy sessions.

Queries are plain ``select(Entity)`` statements. A storage source travels with the
statement as an execution option and selects a session whose engine translates the
default schema to that source.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any, Final

from sqlalchemy import Select, and_, delete, func, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from crudshorts.domain.changeset import Action, Changeset, add_error
from crudshorts.domain.ports.persistence import AggregateOp
from crudshorts.domain.result import Err, Ok, Result

from .constraints import violated_constraint
from .filters import SqlAlchemyFilterEngine
from .unit_of_work import JoinedUnitOfWork, SqlAlchemyUnitOfWork

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from crudshorts.domain.ports.persistence import PersistenceBackend

log = logging.getLogger(__name__)

SOURCE_OPTION: Final[str] = "crudshorts_source"
STREAM_BATCH_SIZE: Final[int] = 500

AGGREGATES: Final = {
    AggregateOp.COUNT: func.count,
    AggregateOp.SUM: func.sum,
    AggregateOp.AVG: func.avg,
    AggregateOp.MIN: func.min,
    AggregateOp.MAX: func.max,
}

type UnitOfWork = SqlAlchemyUnitOfWork | JoinedUnitOfWork


class _TransactionScope:
    """Units of work opened lazily per source while a transaction is running."""

    def __init__(self, backend: SqlAlchemyBackend, stack: ExitStack) -> None:
        self._backend = backend
        self._stack = stack
        self._units: dict[str | None, SqlAlchemyUnitOfWork] = {}
        self.failure: Changeset[Any] | None = None

    def join(self, source: str | None) -> JoinedUnitOfWork:
        unit = self._units.get(source)
        if unit is None:
            unit = self._stack.enter_context(
                SqlAlchemyUnitOfWork(self._backend.session_factory(source))
            )
            self._units[source] = unit
        return JoinedUnitOfWork(unit)

    def abort(self, changeset: Changeset[Any]) -> None:
        """Record a rejected write; the scope then never commits."""

        if self.failure is None:
            self.failure = changeset

    def commit(self) -> None:
        for unit in self._units.values():
            unit.commit()

    def discard(self) -> None:
        for unit in self._units.values():
            unit.discard()


class SqlAlchemyBackend:
    """Persistence backend running every call in its own unit of work.

    Inside ``transaction`` the work receives a backend bound to the transaction: its
    calls share sessions and never commit on their own.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        filters: SqlAlchemyFilterEngine | None = None,
    ) -> None:
        self.engine = engine
        self._filters = filters or SqlAlchemyFilterEngine()
        self._session_factories: dict[str | None, sessionmaker[Session]] = {}
        self._scope: _TransactionScope | None = None

    @property
    def filters(self) -> SqlAlchemyFilterEngine:
        return self._filters

    def session_factory(self, source: str | None = None) -> sessionmaker[Session]:
        factory = self._session_factories.get(source)
        if factory is None:
            bind = self.engine
            if source is not None:
                bind = self.engine.execution_options(schema_translate_map={None: source})
            factory = sessionmaker(bind=bind, expire_on_commit=False)
            self._session_factories[source] = factory
        return factory

    def query(self, source: str | None, schema: type[object]) -> Select[Any]:
        statement = select(schema)
        if source is not None:
            statement = statement.execution_options(**{SOURCE_OPTION: source})
        return statement

    def describe(self, query: object) -> tuple[str | None, type[object]] | None:
        if not isinstance(query, Select):
            return None
        descriptions = query.column_descriptions
        entity = descriptions[0].get("entity") if descriptions else None
        if entity is None:
            return None
        return _source(query), entity

    def get_by_id(self, query: Select[Any], identity: object) -> Any | None:
        schema = query.column_descriptions[0]["entity"]
        key_column = sa_inspect(schema).primary_key[0]
        with self._unit_of_work(_source(query)) as uow:
            return uow.session.scalars(query.where(key_column == identity)).one_or_none()

    def one(self, query: Select[Any]) -> Any | None:
        with self._unit_of_work(_source(query)) as uow:
            return uow.session.scalars(query).one_or_none()

    def query_all(self, query: Select[Any]) -> list[Any]:
        with self._unit_of_work(_source(query)) as uow:
            return list(uow.session.scalars(query).all())

    def stream(self, query: Select[Any]) -> Iterator[Any]:
        with self._unit_of_work(_source(query)) as uow:
            yield from uow.session.scalars(query.execution_options(yield_per=STREAM_BATCH_SIZE))

    def aggregate(self, query: Select[Any], op: AggregateOp, field: str) -> Any:
        schema = query.column_descriptions[0]["entity"]
        column_name = sa_inspect(schema).column_attrs[field].columns[0].name
        subquery = query.subquery()
        statement = select(AGGREGATES[op](subquery.c[column_name]))
        with self._unit_of_work(_source(query)) as uow:
            return uow.session.scalar(statement)

    def insert[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]:
        return self._write(changeset, Action.INSERT)

    def update[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]:
        return self._write(changeset, Action.UPDATE)

    def delete[T](self, changeset: Changeset[T]) -> Ok[T] | Err[Changeset[T]]:
        changeset.action = Action.DELETE
        if not changeset.valid:
            return Err(changeset)
        entity = changeset.data
        mapper = sa_inspect(type(entity))
        key_values = mapper.primary_key_from_instance(entity)
        pairs = zip(mapper.primary_key, key_values, strict=True)
        statement = delete(mapper.local_table).where(
            and_(*(column == value for column, value in pairs))
        )
        with self._unit_of_work(changeset.source) as uow:
            try:
                uow.session.execute(statement)
            except IntegrityError as error:
                constraint = violated_constraint(changeset.constraints, error, deleting=True)
                if constraint is None:
                    raise
                return self._reject(uow, changeset, constraint)
            if entity in uow.session:
                uow.session.expunge(entity)
            uow.commit()
        log.debug("Deleted %s %r", mapper.class_.__name__, key_values)
        return Ok(entity)

    def preload(self, entity: object, field: str, *, source: str | None = None) -> object:
        """Load association ``field`` onto ``entity`` without marking it changed."""

        schema = type(entity)
        with self._unit_of_work(source) as uow:
            session = uow.session
            if entity in session:
                _ = getattr(entity, field)
                return entity
            relationship = sa_inspect(schema).relationships[field]
            current = session.get(schema, sa_inspect(entity).identity)
            if current is None:
                value: object = [] if relationship.uselist else None
            else:
                value = getattr(current, field)
                if relationship.uselist:
                    value = list(value)  # type: ignore[call-overload]
            set_committed_value(entity, field, value)
        log.debug("Preloaded %s.%s", schema.__name__, field)
        return entity

    def transaction[T, E](
        self,
        work: Callable[[PersistenceBackend], Result[T, E]],
        *,
        rollback_on_error: bool = True,
    ) -> Result[T, E]:
        """Run ``work`` against a backend bound to one transaction.

        The transaction commits when ``work`` returns ``Ok``. An ``Err`` rolls it back
        unless ``rollback_on_error`` is false; exceptions always roll it back.
        A write rejected by a constraint aborts the whole transaction: it rolls back
        and an ``Ok`` from ``work`` becomes ``Err`` of the rejected changeset.
        """

        if self._scope is not None:
            return work(self)
        with ExitStack() as stack:
            scope = _TransactionScope(self, stack)
            outcome = work(self._bound(scope))
            if scope.failure is not None:
                log.debug("Rolling back transaction after a rejected write")
                scope.discard()
                if isinstance(outcome, Ok):
                    outcome = Err(scope.failure)  # type: ignore[arg-type]
            elif isinstance(outcome, Err) and rollback_on_error:
                log.debug("Rolling back transaction: %r", outcome.error)
                scope.discard()
            else:
                scope.commit()
        return outcome

    def _bound(self, scope: _TransactionScope) -> SqlAlchemyBackend:
        bound = SqlAlchemyBackend(self.engine, filters=self._filters)
        bound._session_factories = self._session_factories  # noqa: SLF001
        bound._scope = scope  # noqa: SLF001
        return bound

    def _reject[T](
        self, uow: UnitOfWork, changeset: Changeset[T], constraint: Any
    ) -> Err[Changeset[T]]:
        uow.discard()
        failed = _constraint_error(changeset, constraint)
        if self._scope is not None:
            self._scope.abort(failed)
        return Err(failed)

    def _unit_of_work(self, source: str | None) -> UnitOfWork:
        if self._scope is not None:
            return self._scope.join(source)
        return SqlAlchemyUnitOfWork(self.session_factory(source))

    def _write[T](self, changeset: Changeset[T], action: Action) -> Ok[T] | Err[Changeset[T]]:
        changeset.action = action
        if not changeset.valid:
            return Err(changeset)
        with self._unit_of_work(changeset.source) as uow:
            try:
                entity = _materialize(uow.session, changeset)
                uow.session.flush()
            except IntegrityError as error:
                constraint = violated_constraint(changeset.constraints, error)
                if constraint is None:
                    raise
                return self._reject(uow, changeset, constraint)
            uow.commit()
        log.debug("%s %s", action.capitalize(), type(entity).__name__)
        return Ok(entity)


def _source(query: Select[Any]) -> str | None:
    return query.get_execution_options().get(SOURCE_OPTION)


def _constraint_error[T](changeset: Changeset[T], constraint: Any) -> Changeset[T]:
    return add_error(
        changeset,
        constraint.field,
        constraint.message,
        constraint=str(constraint.kind),
        constraint_name=constraint.name,
    )


def _attach[T](session: Session, entity: T) -> T:
    if entity in session:
        return entity
    if sa_inspect(entity).transient:
        session.add(entity)
        return entity
    return session.merge(entity)


def _materialize[T](session: Session, changeset: Changeset[T]) -> T:
    """Apply ``changeset`` and its nested changes to session-bound instances."""

    entity = _attach(session, changeset.data)
    for name, value in changeset.changes.items():
        setattr(entity, name, value)
    for name, pending in changeset.assoc_changes.items():
        if pending is None:
            setattr(entity, name, None)
        elif isinstance(pending, Changeset):
            child = None if _removed(session, pending) else _materialize(session, pending)
            setattr(entity, name, child)
        else:
            kept = [child for child in pending if not _removed(session, child)]
            setattr(entity, name, [_materialize(session, child) for child in kept])
    return entity


def _removed(session: Session, changeset: Changeset[Any]) -> bool:
    if changeset.action is Action.DELETE:
        if sa_inspect(changeset.data).has_identity:
            session.delete(_attach(session, changeset.data))
        return True
    return changeset.action is Action.REPLACE
