# tests/test_models.py

from __future__ import annotations

import pytest

from epicvault.errors import InvariantViolation, NotFoundError, ValidationError
from epicvault.models import Account, Document, Epic, Status, Story


def _doc() -> Document:
    return Document(account=Account(username="alice", id="acc", password_hash="h"))


def test_status_parse_accepts_loose_spellings() -> None:
    assert Status.parse("open") is Status.OPEN
    assert Status.parse("In Progress") is Status.IN_PROGRESS
    assert Status.parse("in_progress") is Status.IN_PROGRESS
    assert Status.parse("CLOSED") is Status.CLOSED
    assert Status.parse(Status.CLOSED) is Status.CLOSED
    with pytest.raises(ValidationError):
        Status.parse("done")


def test_new_items_start_open_and_stories_keep_insertion_order() -> None:
    doc = _doc()
    epic = Epic.new("Epic A")
    doc.insert_epic(epic)
    s1, s2 = Story.new("one"), Story.new("two")
    doc.insert_story(epic.id, s1).insert_story(epic.id, s2)

    assert epic.status is Status.OPEN
    assert s1.status is Status.OPEN
    assert [s.title for s in doc.stories_of(epic.id)] == ["one", "two"]
    assert doc.owner_of(s2.id) is epic


def test_remove_epic_cascades_to_its_stories_only() -> None:
    doc = _doc()
    a, b = Epic.new("A"), Epic.new("B")
    doc.insert_epic(a).insert_epic(b)
    s1, s2, s3 = Story.new("s1"), Story.new("s2"), Story.new("s3")
    doc.insert_story(a.id, s1).insert_story(a.id, s2).insert_story(b.id, s3)

    doc.remove_epic(a.id)

    assert a.id not in doc.epics
    assert s1.id not in doc.stories and s2.id not in doc.stories
    assert s3.id in doc.stories
    doc.check_integrity()


def test_remove_story_detaches_it_from_owner() -> None:
    doc = _doc()
    epic = Epic.new("A")
    story = Story.new("s")
    doc.insert_epic(epic).insert_story(epic.id, story)

    doc.remove_story(story.id)

    assert epic.story_ids == []
    assert story.id not in doc.stories


def test_lookups_raise_not_found() -> None:
    doc = _doc()
    with pytest.raises(NotFoundError):
        doc.get_epic("missing")
    with pytest.raises(NotFoundError):
        doc.remove_story("missing")
    with pytest.raises(NotFoundError):
        doc.insert_story("missing", Story.new("s"))


def test_update_changes_only_given_fields() -> None:
    doc = _doc()
    epic = Epic.new("A", "desc")
    doc.insert_epic(epic)

    doc.update_epic(epic.id, status=Status.IN_PROGRESS)

    assert epic.title == "A"
    assert epic.description == "desc"
    assert epic.status is Status.IN_PROGRESS


def test_integrity_catches_dangling_orphan_and_duplicate_ids() -> None:
    doc = _doc()
    epic = Epic.new("A")
    doc.insert_epic(epic)

    epic.story_ids.append("ghost")
    with pytest.raises(InvariantViolation):
        doc.check_integrity()
    epic.story_ids.clear()

    orphan = Story.new("orphan")
    doc.stories[orphan.id] = orphan
    with pytest.raises(InvariantViolation):
        doc.check_integrity()

    epic.story_ids.extend([orphan.id, orphan.id])
    with pytest.raises(InvariantViolation):
        doc.check_integrity()


def test_document_dict_round_trip_preserves_order_and_status() -> None:
    doc = _doc()
    epic = Epic.new("A")
    doc.insert_epic(epic)
    for title in ("x", "y", "z"):
        doc.insert_story(epic.id, Story.new(title))
    doc.update_epic(epic.id, status=Status.CLOSED)

    again = Document.from_dict(doc.to_dict())

    assert again == doc
    assert again.to_dict()["epics"][epic.id]["status"] == "Closed"
