"""Run many find-then-write steps as a single all-or-nothing transaction.

Steps run strictly in order inside one backend transaction so a step observes the
writes of the steps before it. The first failing step aborts the unit: the
transaction is rolled back and the failure reports the step index, its cause and
the in-memory results of the steps that ran before it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from . import operations
from .errors import BatchStepFailed
from .queryable import Queryable, resolve
from .result import Err, Ok, Result

if TYPE_CHECKING:
    from .builder import ChangesetHook
    from .ports.persistence import PersistenceBackend

log = logging.getLogger(__name__)

type FindUpdatePair = tuple[Mapping[str, object], Mapping[str, object]]
type StepOperation[P] = Callable[[PersistenceBackend, P], Result[Any, Any]]


class StepOutcome(StrEnum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass(slots=True, kw_only=True)
class BatchStep[P]:
    index: int
    payload: P
    outcome: StepOutcome = StepOutcome.PENDING
    result: object = None
    started: bool = False


class BatchUnit[P]:
    """Ordered steps sharing one operation and one transaction."""

    def __init__(self, operation: StepOperation[P], payloads: Iterable[P]) -> None:
        self.operation = operation
        self.steps = [
            BatchStep(index=index, payload=payload) for index, payload in enumerate(payloads)
        ]

    def execute(self, backend: PersistenceBackend) -> Result[dict[int, Any], BatchStepFailed]:
        log.debug("Executing batch of %d steps", len(self.steps))
        try:
            outcome = backend.transaction(self._run)
        except Exception:
            log.debug("Batch rolled back by an exception")
            for step in self.steps:
                if step.started:
                    step.outcome = StepOutcome.ROLLED_BACK
            raise
        match outcome:
            case Ok():
                for step in self.steps:
                    step.outcome = StepOutcome.COMMITTED
            case Err(failure):
                log.debug("Batch rolled back at step %d", failure.index)
                for step in self.steps[: failure.index]:
                    step.outcome = StepOutcome.ROLLED_BACK
                self.steps[failure.index].outcome = StepOutcome.FAILED
        return outcome

    def _run(self, backend: PersistenceBackend) -> Result[dict[int, Any], BatchStepFailed]:
        changes: dict[int, Any] = {}
        for step in self.steps:
            step.started = True
            match self.operation(backend, step.payload):
                case Ok(value):
                    step.result = value
                    changes[step.index] = value
                case Err(cause):
                    step.result = cause
                    return Err(BatchStepFailed(index=step.index, cause=cause, changes=changes))
        return Ok(changes)


def find_or_create_many(
    backend: PersistenceBackend,
    ref: Queryable,
    params_list: Sequence[Mapping[str, object]],
    hook: ChangesetHook | None = None,
    *,
    order_by: object = None,
    group_by: object = None,
) -> Result[dict[int, Any], BatchStepFailed]:
    """Reuse the row matching each params map, inserting it when missing."""

    def step(tx: PersistenceBackend, params: Mapping[str, object]) -> Result[Any, Any]:
        match operations.find_one(tx, ref, params, order_by=order_by, group_by=group_by):
            case Ok() as found:
                return found
            case _:
                return operations.insert(tx, ref, params, hook)

    return BatchUnit(step, params_list).execute(backend)


def find_and_update_many(
    backend: PersistenceBackend,
    ref: Queryable,
    pairs: Sequence[FindUpdatePair],
    hook: ChangesetHook | None = None,
    *,
    order_by: object = None,
    group_by: object = None,
) -> Result[dict[int, Any], BatchStepFailed]:
    """Update the row found by each find map; a missing row aborts the batch."""

    source = resolve(ref, backend=backend)[0]

    def step(tx: PersistenceBackend, pair: FindUpdatePair) -> Result[Any, Any]:
        find_params, update_params = pair
        match operations.find_one(tx, ref, find_params, order_by=order_by, group_by=group_by):
            case Ok(entity):
                return operations.update(tx, entity, update_params, hook, source=source)
            case not_found:
                return not_found

    return BatchUnit(step, pairs).execute(backend)


def find_and_upsert_many(
    backend: PersistenceBackend,
    ref: Queryable,
    pairs: Sequence[FindUpdatePair],
    hook: ChangesetHook | None = None,
    *,
    order_by: object = None,
    group_by: object = None,
) -> Result[dict[int, Any], BatchStepFailed]:
    """Update found rows; insert the merged find and upsert params otherwise."""

    source = resolve(ref, backend=backend)[0]

    def step(tx: PersistenceBackend, pair: FindUpdatePair) -> Result[Any, Any]:
        find_params, upsert_params = pair
        match operations.find_one(tx, ref, find_params, order_by=order_by, group_by=group_by):
            case Ok(entity):
                return operations.update(tx, entity, upsert_params, hook, source=source)
            case _:
                return operations.insert(tx, ref, {**find_params, **upsert_params}, hook)

    return BatchUnit(step, pairs).execute(backend)
