"""Mapped schemas shared by the test suite."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, orm
from sqlalchemy.orm import configure_mappers, relationship

from crudshorts.adapters.sqlalchemy import SchemaMixin
from crudshorts.domain.changeset import (
    cast,
    foreign_key_constraint,
    no_assoc_constraint,
    unique_constraint,
    validate_length,
    validate_required,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Self

    from crudshorts.domain.changeset import Changeset

log = logging.getLogger(__name__)

metadata = MetaData()
mapper_registry = orm.registry(metadata=metadata)

user_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100)),
)

post_table = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(200)),
    Column("unique_identifier", String(64), unique=True),
    Column("likes", Integer),
    Column("user_id", Integer, ForeignKey("users.id")),
)

comment_table = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("body", String(500)),
    Column("post_id", Integer, ForeignKey("posts.id")),
    Column("user_id", Integer, ForeignKey("users.id")),
)

user_post_table = Table(
    "user_posts",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("post_id", Integer, ForeignKey("posts.id"), primary_key=True),
)

note_table = Table(
    "notes",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("body", String(500)),
)


@dataclass(eq=False, kw_only=True)
class User(SchemaMixin):
    id: int | None = None
    name: str | None = None


@dataclass(eq=False, kw_only=True)
class Post(SchemaMixin):
    id: int | None = None
    title: str | None = None
    unique_identifier: str | None = None
    likes: int | None = None
    user_id: int | None = None

    @classmethod
    def changeset(
        cls, data: Self | Changeset[Self], params: Mapping[str, object]
    ) -> Changeset[Self]:
        changeset = cast(data, params, ("title", "unique_identifier", "likes", "user_id"))
        validate_length(changeset, "title", min=3)
        unique_constraint(changeset, "unique_identifier")
        return no_assoc_constraint(changeset, "comments")


@dataclass(eq=False, kw_only=True)
class Comment(SchemaMixin):
    id: int | None = None
    body: str | None = None
    post_id: int | None = None
    user_id: int | None = None

    @classmethod
    def changeset(
        cls, data: Self | Changeset[Self], params: Mapping[str, object]
    ) -> Changeset[Self]:
        changeset = cast(data, params, ("body", "post_id", "user_id"))
        validate_required(changeset, "body")
        return foreign_key_constraint(changeset, "post_id")


@dataclass(eq=False, kw_only=True)
class Note(SchemaMixin):
    id: int | None = None
    body: str | None = None


@cache
def start_mappers() -> orm.registry:
    log.info("Starting test mappers")

    mapper_registry.map_imperatively(
        User,
        user_table,
        properties={"posts": relationship(Post, back_populates="user")},
    )
    mapper_registry.map_imperatively(
        Post,
        post_table,
        properties={
            "user": relationship(User, back_populates="posts"),
            "comments": relationship(Comment, back_populates="post"),
            "users": relationship(User, secondary=user_post_table),
            "authors": relationship(User, secondary=comment_table, viewonly=True),
        },
    )
    mapper_registry.map_imperatively(
        Comment,
        comment_table,
        properties={"post": relationship(Post, back_populates="comments")},
    )
    mapper_registry.map_imperatively(Note, note_table)

    configure_mappers()
    return mapper_registry
