"""Session lifecycles for backend calls and transactions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.orm import Session, sessionmaker

log = logging.getLogger(__name__)


class UnitOfWorkError(RuntimeError):
    """Raised when a unit of work is used outside its ``with`` block."""


class SqlAlchemyUnitOfWork:
    """One session, committed explicitly and discarded on error."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory
        self._session: Session | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session = self.session_factory()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.discard()
        self.session.close()
        self.session = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def discard(self) -> None:
        """Roll back after detaching every instance so they keep their in-memory state."""

        log.debug("Discarding unit of work")
        self.session.expunge_all()
        self.session.rollback()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise UnitOfWorkError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise UnitOfWorkError("Unit of work session already initialised")
        self._session = session


class JoinedUnitOfWork:
    """Participates in an enclosing unit of work without owning its session.

    Commits are left to the owner; discarding rolls back the whole enclosing unit.
    """

    def __init__(self, owner: SqlAlchemyUnitOfWork) -> None:
        self.owner = owner

    def __enter__(self) -> JoinedUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        return False

    def commit(self) -> None:
        return None

    def discard(self) -> None:
        self.owner.discard()

    @property
    def session(self) -> Session:
        return self.owner.session
