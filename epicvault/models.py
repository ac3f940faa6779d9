# -*- coding: utf-8 -*-
"""Domain model: accounts, epics, stories and the per-user Document.

The Document is the unit of encryption and persistence. Mutation helpers
here are pure in-memory operations; persistence happens only through
:meth:`epicvault.store.DocumentStore.transact`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .errors import InvariantViolation, NotFoundError, ValidationError


def new_id() -> str:
    """Return a fresh random identifier (UUIDv4 string)."""
    return str(uuid.uuid4())


class Status(Enum):
    """Lifecycle state of an epic or story. Only changed explicitly."""

    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, raw: Any) -> "Status":
        """Accept a Status, its value, or a loose spelling like ``in progress``."""
        if isinstance(raw, Status):
            return raw
        key = str(raw or "").strip().lower().replace(" ", "").replace("_", "").replace("-", "")
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValidationError(f"Invalid status: {raw!r} (expected Open, InProgress or Closed)")


@dataclass
class Story:
    id: str
    title: str
    description: str = ""
    status: Status = Status.OPEN

    @classmethod
    def new(cls, title: str, description: str = "") -> "Story":
        return cls(id=new_id(), title=title, description=description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Story":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            description=str(data.get("description", "")),
            status=Status(data.get("status", Status.OPEN.value)),
        )


@dataclass
class Epic:
    id: str
    title: str
    description: str = ""
    status: Status = Status.OPEN
    story_ids: List[str] = field(default_factory=list)

    @classmethod
    def new(cls, title: str, description: str = "") -> "Epic":
        return cls(id=new_id(), title=title, description=description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "story_ids": list(self.story_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Epic":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            description=str(data.get("description", "")),
            status=Status(data.get("status", Status.OPEN.value)),
            story_ids=[str(s) for s in data.get("story_ids", [])],
        )


@dataclass
class Account:
    username: str
    id: str
    password_hash: str
    totp_secret: Optional[str] = None

    @property
    def totp_enabled(self) -> bool:
        return bool(self.totp_secret)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "id": self.id,
            "password_hash": self.password_hash,
            "totp_secret": self.totp_secret,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            username=str(data["username"]),
            id=str(data["id"]),
            password_hash=str(data["password_hash"]),
            totp_secret=data.get("totp_secret") or None,
        )


@dataclass
class Document:
    """Complete state of one account: the account record, epics and stories."""

    account: Account
    epics: Dict[str, Epic] = field(default_factory=dict)
    stories: Dict[str, Story] = field(default_factory=dict)

    # ---- serialization ----

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account.to_dict(),
            "epics": {eid: e.to_dict() for eid, e in self.epics.items()},
            "stories": {sid: s.to_dict() for sid, s in self.stories.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        """Build a Document; raises KeyError/TypeError/ValueError on bad shape."""
        epics = {str(k): Epic.from_dict(v) for k, v in dict(data.get("epics", {})).items()}
        stories = {str(k): Story.from_dict(v) for k, v in dict(data.get("stories", {})).items()}
        return cls(account=Account.from_dict(data["account"]), epics=epics, stories=stories)

    def content(self) -> Dict[str, Any]:
        """Epics and stories only (what an export or re-key must preserve)."""
        full = self.to_dict()
        return {"epics": full["epics"], "stories": full["stories"]}

    # ---- lookups ----

    def get_epic(self, epic_id: str) -> Epic:
        try:
            return self.epics[epic_id]
        except KeyError:
            raise NotFoundError(f"Epic not found: {epic_id}") from None

    def get_story(self, story_id: str) -> Story:
        try:
            return self.stories[story_id]
        except KeyError:
            raise NotFoundError(f"Story not found: {story_id}") from None

    def owner_of(self, story_id: str) -> Epic:
        """Return the epic whose story_ids contains *story_id*."""
        self.get_story(story_id)
        for epic in self.epics.values():
            if story_id in epic.story_ids:
                return epic
        raise InvariantViolation(f"Story {story_id} has no owning epic")

    def stories_of(self, epic_id: str) -> List[Story]:
        """Stories of an epic in display (insertion) order."""
        epic = self.get_epic(epic_id)
        out: List[Story] = []
        for sid in epic.story_ids:
            story = self.stories.get(sid)
            if story is None:
                raise InvariantViolation(f"Epic {epic_id} references missing story {sid}")
            out.append(story)
        return out

    # ---- mutations ----

    def insert_epic(self, epic: Epic) -> "Document":
        if epic.id in self.epics:
            raise InvariantViolation(f"Duplicate epic id {epic.id}")
        self.epics[epic.id] = epic
        return self

    def update_epic(
        self,
        epic_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[Status] = None,
    ) -> "Document":
        epic = self.get_epic(epic_id)
        if title is not None:
            epic.title = title
        if description is not None:
            epic.description = description
        if status is not None:
            epic.status = status
        return self

    def remove_epic(self, epic_id: str) -> "Document":
        """Remove an epic and every story it owns, in one step."""
        epic = self.get_epic(epic_id)
        for sid in epic.story_ids:
            self.stories.pop(sid, None)
        del self.epics[epic_id]
        return self

    def insert_story(self, epic_id: str, story: Story) -> "Document":
        epic = self.get_epic(epic_id)
        if story.id in self.stories or story.id in epic.story_ids:
            raise InvariantViolation(f"Duplicate story id {story.id}")
        self.stories[story.id] = story
        epic.story_ids.append(story.id)
        return self

    def update_story(
        self,
        story_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[Status] = None,
    ) -> "Document":
        story = self.get_story(story_id)
        if title is not None:
            story.title = title
        if description is not None:
            story.description = description
        if status is not None:
            story.status = status
        return self

    def remove_story(self, story_id: str) -> "Document":
        owner = self.owner_of(story_id)
        owner.story_ids.remove(story_id)
        del self.stories[story_id]
        return self

    # ---- invariants ----

    def check_integrity(self) -> None:
        """Raise InvariantViolation if ownership is inconsistent."""
        owned: Dict[str, str] = {}
        for eid, epic in self.epics.items():
            if epic.id != eid:
                raise InvariantViolation(f"Epic key {eid} does not match id {epic.id}")
            if len(set(epic.story_ids)) != len(epic.story_ids):
                raise InvariantViolation(f"Epic {eid} lists a story twice")
            for sid in epic.story_ids:
                if sid not in self.stories:
                    raise InvariantViolation(f"Epic {eid} references missing story {sid}")
                if sid in owned:
                    raise InvariantViolation(f"Story {sid} owned by {owned[sid]} and {eid}")
                owned[sid] = eid
        for sid, story in self.stories.items():
            if story.id != sid:
                raise InvariantViolation(f"Story key {sid} does not match id {story.id}")
            if sid not in owned:
                raise InvariantViolation(f"Orphan story {sid}")
