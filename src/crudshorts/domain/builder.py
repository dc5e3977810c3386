"""Build changesets from a base and raw params, then apply a caller hook."""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .changeset import Changeset
from .queryable import Bare, PrebuiltQuery, SourceOverride, as_reference, resolve

if TYPE_CHECKING:
    from .ports.persistence import PersistenceBackend

type HookTriple = tuple[object, str, Sequence[object]]
type ChangesetHook = (
    HookTriple
    | Callable[[Changeset[Any]], Changeset[Any]]
    | Callable[[Changeset[Any], Mapping[str, object]], Changeset[Any]]
)


def build(
    base: object,
    params: Mapping[str, object] | None = None,
    hook: ChangesetHook | None = None,
    *,
    backend: PersistenceBackend | None = None,
) -> Changeset[Any]:
    """Run the schema's own ``changeset`` routine on ``base`` and then ``hook``.

    ``base`` is an entity, an existing changeset or a queryable reference; references
    start from an empty template of their schema.
    """

    params = dict(params or {})
    data, source = _base_data(base, backend)
    changeset = type(_entity(data)).changeset(data, params)
    if source is not None:
        changeset.source = source
    return apply_hook(changeset, params, hook)


def apply_hook(
    changeset: Changeset[Any],
    params: Mapping[str, object],
    hook: ChangesetHook | None,
) -> Changeset[Any]:
    match hook:
        case None:
            return changeset
        case (owner, str() as name, args):
            return getattr(owner, name)(changeset, *args)
        case _ if callable(hook):
            if _positional_arity(hook) >= 2:  # noqa: PLR2004
                return hook(changeset, params)  # type: ignore[call-arg]
            return hook(changeset)  # type: ignore[call-arg]
        case _:
            raise TypeError(f"Unsupported changeset hook: {hook!r}")


def _base_data(base: object, backend: PersistenceBackend | None) -> tuple[object, str | None]:
    if isinstance(base, Changeset):
        return base, None
    if isinstance(base, type | tuple | Bare | SourceOverride | PrebuiltQuery):
        source, schema = resolve(as_reference(base), backend=backend)
        return schema.template(), source
    return base, None


def _entity(data: object) -> object:
    return data.data if isinstance(data, Changeset) else data


def _positional_arity(hook: Callable[..., object]) -> int:
    parameters = inspect.signature(hook).parameters.values()
    if any(parameter.kind is inspect.Parameter.VAR_POSITIONAL for parameter in parameters):
        return 2
    return sum(
        1
        for parameter in parameters
        if parameter.kind
        in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    )
