from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from crudshorts.domain.queryable import (
    Bare,
    PrebuiltQuery,
    SourceOverride,
    as_reference,
    resolve,
    template,
    to_query,
    with_source,
)
from tests.support.schemas import Note, Post

if TYPE_CHECKING:
    from crudshorts.adapters.sqlalchemy import SqlAlchemyBackend


def test_as_reference_normalises_every_form() -> None:
    query = select(Post)

    assert as_reference(Post) == Bare(Post)
    assert as_reference(("archive", Note)) == SourceOverride("archive", Note)
    assert as_reference((None, Note)) == SourceOverride(None, Note)
    assert as_reference(query) == PrebuiltQuery(query)
    assert as_reference(Bare(Post)) == Bare(Post)


def test_resolve_plain_references() -> None:
    assert resolve(Post) == (None, Post)
    assert resolve(("archive", Note)) == ("archive", Note)


def test_resolve_prebuilt_query_through_the_backend(backend: SqlAlchemyBackend) -> None:
    query = backend.query("archive", Note)

    assert resolve(query, backend=backend) == ("archive", Note)
    assert resolve(select(Post), backend=backend) == (None, Post)


def test_resolve_prebuilt_query_without_backend_fails() -> None:
    with pytest.raises(TypeError, match="Cannot resolve a schema"):
        resolve(select(Post))


def test_template_is_a_fresh_instance() -> None:
    first = template(Post)

    assert isinstance(first, Post)
    assert first is not template(Post)
    assert not Post.is_persisted(first)


def test_with_source_and_to_query(backend: SqlAlchemyBackend) -> None:
    ref = with_source(Note, "archive")

    assert ref == SourceOverride("archive", Note)
    assert resolve(to_query(ref, backend), backend=backend) == ("archive", Note)
