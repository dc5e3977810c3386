"""Error values returned by actions and errors raised on misuse.

Expected failures (missing rows, invalid changesets, blocked deletes, failed batch
steps) are plain values wrapped in ``Err``. Structural misuse of associations is a
programmer error and raises.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from .changeset import Changeset


class ErrorCode(StrEnum):
    NOT_FOUND = "not_found"
    CONSTRAINT_VIOLATION = "constraint_violation"
    BATCH_STEP_FAILED = "batch_step_failed"


@dataclass(slots=True, kw_only=True)
class NotFound:
    """No row matched a lookup."""

    code: Literal[ErrorCode.NOT_FOUND] = ErrorCode.NOT_FOUND
    message: str = "no records found"
    details: Mapping[str, object] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class ConstraintViolation:
    """The backend rejected a write or delete because of a database constraint."""

    code: Literal[ErrorCode.CONSTRAINT_VIOLATION] = ErrorCode.CONSTRAINT_VIOLATION
    message: str
    changeset: Changeset[object]
    entity: object
    schema: type[object]


@dataclass(slots=True, kw_only=True)
class BatchStepFailed:
    """A batch aborted at ``index``; ``changes`` were rolled back."""

    code: Literal[ErrorCode.BATCH_STEP_FAILED] = ErrorCode.BATCH_STEP_FAILED
    index: int
    cause: object
    changes: dict[int, object] = field(default_factory=dict)


class AssociationError(ValueError):
    """Base class for association misuse."""

    def __init__(self, message: str, *, field: str, schema: type[object]) -> None:
        super().__init__(message)
        self.field = field
        self.schema = schema


class AssociationNotFoundError(AssociationError):
    def __init__(self, *, field: str, schema: type[object]) -> None:
        super().__init__(
            f"The key :{field} is not an association for the queryable {schema.__name__}",
            field=field,
            schema=schema,
        )


class ReadOnlyAssociationError(AssociationError):
    def __init__(self, *, field: str, schema: type[object]) -> None:
        super().__init__(
            f"The association :{field} of {schema.__name__} is read-only and cannot be changed",
            field=field,
            schema=schema,
        )


class CardinalityMismatchError(AssociationError):
    def __init__(self, *, field: str, schema: type[object]) -> None:
        super().__init__(
            f"Cannot select :{field} of {schema.__name__} by ids, "
            "the association does not have many cardinality",
            field=field,
            schema=schema,
        )


class AssociationNotLoadedError(AssociationError):
    def __init__(self, *, field: str, schema: type[object]) -> None:
        super().__init__(
            f"Attempting to cast or change association :{field} from {schema.__name__} "
            "that was not loaded, preload it first",
            field=field,
            schema=schema,
        )
