from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from crudshorts.adapters.sqlalchemy import SOURCE_OPTION, SqlAlchemyBackend
from crudshorts.domain.builder import build
from crudshorts.domain.changeset import Action, put_assoc
from crudshorts.domain.ports import NOT_LOADED, PersistenceBackend
from crudshorts.domain.result import Err, Ok
from tests.support.schemas import Comment, Note, Post

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def test_backend_satisfies_the_port(backend: SqlAlchemyBackend) -> None:
    assert isinstance(backend, PersistenceBackend)


def test_query_carries_the_source(backend: SqlAlchemyBackend) -> None:
    plain = backend.query(None, Post)
    archived = backend.query("archive", Note)

    assert SOURCE_OPTION not in plain.get_execution_options()
    assert archived.get_execution_options()[SOURCE_OPTION] == "archive"
    assert backend.describe(archived) == ("archive", Note)
    assert backend.describe("not a query") is None


def test_session_factories_are_cached_per_source(backend: SqlAlchemyBackend) -> None:
    assert backend.session_factory() is backend.session_factory(None)
    assert backend.session_factory("archive") is not backend.session_factory()


def test_insert_and_get_by_id(backend: SqlAlchemyBackend) -> None:
    result = backend.insert(build(Post, {"title": "Hello"}))

    assert isinstance(result, Ok)
    post = result.value
    assert post.id is not None
    fetched = backend.get_by_id(backend.query(None, Post), post.id)
    assert fetched is not None
    assert fetched.title == "Hello"


def test_invalid_changeset_is_not_written(backend: SqlAlchemyBackend) -> None:
    changeset = build(Post, {"title": "no"})

    result = backend.insert(changeset)

    assert result == Err(changeset)
    assert changeset.action is Action.INSERT
    assert backend.query_all(select(Post)) == []


def test_fetched_associations_start_unloaded(backend: SqlAlchemyBackend) -> None:
    post = backend.insert(build(Post, {"title": "Hello"})).unwrap()
    backend.insert(build(Comment, {"body": "hi", "post_id": post.id})).unwrap()

    fetched = backend.get_by_id(backend.query(None, Post), post.id)

    assert Post.loaded_value(fetched, "comments") is NOT_LOADED
    backend.preload(fetched, "comments")
    assert [comment.body for comment in Post.loaded_value(fetched, "comments")] == ["hi"]


def test_preload_single_association(backend: SqlAlchemyBackend) -> None:
    post = backend.insert(build(Post, {"title": "Hello"})).unwrap()
    backend.insert(build(Comment, {"body": "hi", "post_id": post.id})).unwrap()
    comment = backend.one(select(Comment))

    backend.preload(comment, "post")

    assert comment.post.id == post.id


def test_nested_one_insert(backend: SqlAlchemyBackend) -> None:
    changeset = build(Comment, {"body": "hi"})
    put_assoc(changeset, "post", Post(title="Parent"))

    comment = backend.insert(changeset).unwrap()

    assert comment.post_id is not None
    assert backend.get_by_id(backend.query(None, Post), comment.post_id).title == "Parent"


def test_nested_transactions_join_the_outer_one(backend: SqlAlchemyBackend) -> None:
    def inner(tx: PersistenceBackend) -> Ok[Post] | Err[object]:
        return tx.insert(build(Post, {"title": "Inner"}))

    def outer(tx: PersistenceBackend) -> Err[str]:
        tx.transaction(inner).unwrap()
        return Err("abort")

    assert backend.transaction(outer) == Err("abort")
    assert backend.query_all(select(Post)) == []


def test_transaction_reads_its_own_writes(backend: SqlAlchemyBackend) -> None:
    def work(tx: PersistenceBackend) -> Ok[int]:
        tx.insert(build(Post, {"title": "Inside"})).unwrap()
        return Ok(len(tx.query_all(select(Post))))

    assert backend.transaction(work) == Ok(1)


def test_stream_and_aggregate(backend: SqlAlchemyBackend) -> None:
    for likes in (1, 5):
        backend.insert(build(Post, {"title": f"Post {likes}", "likes": likes})).unwrap()

    assert [post.likes for post in backend.stream(select(Post).order_by(Post.likes))] == [1, 5]
    assert backend.aggregate(select(Post), "max", "likes") == 5  # type: ignore[arg-type]


def test_sources_use_separate_tables(sqlite_engine: Engine) -> None:
    backend = SqlAlchemyBackend(sqlite_engine)
    archived = build(("archive", Note), {"body": "old"})

    backend.insert(archived).unwrap()

    assert backend.query_all(backend.query(None, Note)) == []
    assert [note.body for note in backend.query_all(backend.query("archive", Note))] == ["old"]

