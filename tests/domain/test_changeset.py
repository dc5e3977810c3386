from __future__ import annotations

from crudshorts.domain.changeset import (
    Action,
    ConstraintKind,
    cast,
    cast_assoc,
    change,
    get_change,
    get_field,
    no_assoc_constraint,
    put_assoc,
    put_change,
    traverse_errors,
    validate_length,
    validate_required,
)
from tests.support.schemas import Comment, Post


def test_cast_coerces_permitted_params_to_column_types() -> None:
    changeset = cast(Post(), {"title": "Hello", "likes": "5", "id": 9}, ("title", "likes"))

    assert changeset.changes == {"title": "Hello", "likes": 5}
    assert changeset.params == {"title": "Hello", "likes": "5", "id": 9}
    assert changeset.valid


def test_cast_marks_uncastable_values_invalid() -> None:
    changeset = cast(Post(), {"likes": "many"}, ("likes",))

    assert changeset.errors_on("likes") == ["is invalid"]
    assert "likes" not in changeset.changes
    assert not changeset.valid


def test_put_change_drops_values_equal_to_the_entity() -> None:
    changeset = change(Post(title="Same"), {"title": "Same", "likes": 2})

    assert changeset.changes == {"likes": 2}
    assert get_field(changeset, "title") == "Same"
    assert get_change(changeset, "title") is None


def test_put_change_routes_associations_to_nested_changesets() -> None:
    changeset = change(Post(title="Hello"), {"comments": [Comment(body="first")]})

    (child,) = changeset.assoc_changes["comments"]
    assert child.action is Action.INSERT
    assert child.data.body == "first"
    assert [comment.body for comment in get_field(changeset, "comments")] == ["first"]


def test_validate_length_reports_the_bound() -> None:
    changeset = Post.changeset(Post(), {"title": "Hi"})

    assert changeset.errors_on("title") == ["should be at least 3 character(s)"]


def test_validate_length_ignores_unchanged_fields() -> None:
    changeset = validate_length(change(Post(title="Hi")), "title", min=3)

    assert changeset.valid


def test_validate_required_rejects_blank_strings() -> None:
    changeset = validate_required(cast(Comment(), {"body": "   "}, ("body",)), "body")

    assert changeset.errors_on("body") == ["can't be blank"]
    assert changeset.required == ["body"]


def test_no_assoc_constraint_message_follows_cardinality() -> None:
    many = Post.changeset(Post(), {}).constraints
    one = no_assoc_constraint(change(Comment()), "post").constraints

    (comments,) = [constraint for constraint in many if constraint.kind is ConstraintKind.NO_ASSOC]
    assert comments.message == "are still associated with this entry"
    assert one[-1].message == "is still associated with this entry"


def test_cast_assoc_builds_inserts_and_flags_invalid_children() -> None:
    changeset = Post.changeset(
        Post(), {"title": "Hello", "comments": [{"body": "fine"}, {"body": ""}]}
    )

    cast_assoc(changeset, "comments")

    children = changeset.assoc_changes["comments"]
    assert [child.action for child in children] == [Action.INSERT, Action.INSERT]
    assert changeset.errors_on("comments") == ["is invalid"]
    assert not changeset.valid
    assert traverse_errors(changeset) == {"comments": [{}, {"body": ["can't be blank"]}]}


def test_cast_assoc_required_without_members() -> None:
    changeset = cast_assoc(Post.changeset(Post(), {"title": "Hello"}), "comments", required=True)

    assert changeset.errors_on("comments") == ["can't be blank"]


def test_cast_assoc_rejects_a_map_for_many_cardinality() -> None:
    changeset = cast_assoc(Post.changeset(Post(), {"comments": {"body": "x"}}), "comments")

    assert changeset.errors_on("comments") == ["is invalid"]
    assert "comments" not in changeset.assoc_changes


def test_put_assoc_one_cardinality_accepts_an_entity_and_none() -> None:
    parent = Post(title="Parent")
    changeset = put_assoc(change(Comment(body="x")), "post", parent)

    assert changeset.assoc_changes["post"].data is parent
    assert get_field(changeset, "post") is parent

    put_assoc(changeset, "post", None)
    assert get_field(changeset, "post") is None


def test_put_assoc_many_requires_a_list() -> None:
    changeset = put_assoc(change(Post(title="Hello")), "comments", Comment(body="x"))

    assert changeset.errors_on("comments") == ["is invalid"]
