from __future__ import annotations

from crudshorts.domain.ports import NOT_LOADED, Cardinality, Relation, Schema
from tests.support.schemas import Comment, Note, Post, User


def test_mapped_classes_satisfy_the_schema_port() -> None:
    assert isinstance(Post(), Schema)
    assert Post.identity_key() == "id"
    assert Post.identity(Post(id=4)) == 4


def test_descriptors_follow_the_relationships() -> None:
    comments = Post.association_descriptor("comments")
    user = Post.association_descriptor("user")
    users = Post.association_descriptor("users")
    authors = Post.association_descriptor("authors")

    assert comments is not None
    assert (comments.cardinality, comments.relation, comments.target) == (
        Cardinality.MANY,
        Relation.HAS_MANY,
        Comment,
    )
    assert comments.owns_target
    assert user is not None
    assert (user.cardinality, user.relation) == (Cardinality.ONE, Relation.BELONGS_TO)
    assert users is not None
    assert users.relation is Relation.MANY_TO_MANY
    assert not users.owns_target
    assert authors is not None
    assert authors.read_only
    assert authors.target is User
    assert Post.association_descriptor("title") is None


def test_field_metadata() -> None:
    assert Post.field_names() == ("title", "unique_identifier", "likes", "user_id")
    assert Post.field_type("likes") is int
    assert Post.field_type("title") is str
    assert Post.field_type("comments") is None


def test_template_and_loaded_values() -> None:
    note = Note.template()

    assert isinstance(note, Note)
    assert not Note.is_persisted(note)
    assert Note.loaded_value(note, "body") is None
    assert Post.loaded_value(Post(), "comments") == []
    assert Post.loaded_value(Post(), "comments") is not NOT_LOADED
