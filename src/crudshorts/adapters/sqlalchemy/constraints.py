"""Match database integrity errors against constraints declared on a changeset."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Final

from crudshorts.domain.changeset import ConstraintKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.exc import IntegrityError

    from crudshorts.domain.changeset import Constraint

log = logging.getLogger(__name__)

UNIQUE_MARKERS: Final = ("unique constraint", "duplicate key", "duplicate entry")
FOREIGN_KEY_MARKERS: Final = ("foreign key constraint",)


def violated_constraint(
    constraints: Sequence[Constraint],
    error: IntegrityError,
    *,
    deleting: bool = False,
) -> Constraint | None:
    """Return the declared constraint that explains ``error``, if any.

    Named constraints match on their name. Unnamed ones fall back on the kind of
    violation reported by the driver; SQLite, for instance, never names foreign keys.
    """

    message = str(error.orig)
    for constraint in constraints:
        if constraint.name and constraint.name in message:
            return constraint

    lowered = message.lower()
    if any(marker in lowered for marker in UNIQUE_MARKERS):
        for constraint in constraints:
            if constraint.kind is ConstraintKind.UNIQUE and _mentions(lowered, constraint.field):
                return constraint
    if any(marker in lowered for marker in FOREIGN_KEY_MARKERS):
        kind = ConstraintKind.NO_ASSOC if deleting else ConstraintKind.FOREIGN_KEY
        for constraint in constraints:
            if constraint.kind is kind and constraint.name is None:
                return constraint

    log.debug("No declared constraint matches %r", message)
    return None


def _mentions(message: str, field: str) -> bool:
    return re.search(rf"\b{re.escape(field.lower())}\b", message) is not None
