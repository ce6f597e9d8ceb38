"""Data models for the story ledger (prd.json)."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from twin.errors import InvalidTransitionError

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_DONE = "done"

# Forward-only ordering of story statuses.
STATUS_RANK = {STATUS_OPEN: 0, STATUS_IN_PROGRESS: 1, STATUS_DONE: 2}

STORY_ID_PREFIX = "US-"
_STORY_ID_RE = re.compile(r"^US-(\d+)$")

_STORY_KEYS = {
    "id",
    "title",
    "description",
    "acceptanceCriteria",
    "status",
    "completedAt",
    "whyNow",
}
_LEDGER_KEYS = {"project", "description", "userStories", "lastStoryNumber"}


def format_story_id(number: int) -> str:
    """Format a story number as ``US-007``."""
    return f"{STORY_ID_PREFIX}{number:03d}"


def story_number(story_id: str) -> Optional[int]:
    """Return the numeric part of a ``US-nnn`` id, or None for foreign ids."""
    match = _STORY_ID_RE.match(story_id or "")
    return int(match.group(1)) if match else None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _as_int(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class Story:
    """A single unit of work in the ledger.

    Attributes:
        id: Unique identifier (e.g., 'US-004').
        title: Short label.
        description: User-story sentence.
        acceptance_criteria: Ordered, checkable statements.
        status: 'open', 'in_progress' or 'done'.
        completed_at: ISO-8601 timestamp, only when done.
        why_now: Why the story was chosen; set at creation.
        extra: Unknown keys carried through a load/save round trip.
    """

    id: str
    title: str
    description: str = ""
    acceptance_criteria: List[str] = field(default_factory=list)
    status: str = STATUS_OPEN
    completed_at: Optional[str] = None
    why_now: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status == STATUS_DONE

    def advance(self, status: str, completed_at: Optional[str] = None) -> None:
        """Move the story forward to ``status``.

        Args:
            status: Target status.
            completed_at: Completion timestamp; defaults to now when moving
                to done.

        Raises:
            InvalidTransitionError: If the target is unknown or earlier
                than the current status.
        """
        if status not in STATUS_RANK:
            raise InvalidTransitionError(f"{self.id}: unknown status {status!r}")
        current = STATUS_RANK.get(self.status, 0)
        if STATUS_RANK[status] < current:
            raise InvalidTransitionError(
                f"{self.id}: cannot move from {self.status} back to {status}"
            )
        self.status = status
        if status == STATUS_DONE:
            self.completed_at = completed_at or self.completed_at or utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        """Convert story to its prd.json representation.

        Returns:
            Dictionary using the camelCase keys of the ledger file.
        """
        d: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "status": self.status,
        }
        if self.status == STATUS_DONE and self.completed_at:
            d["completedAt"] = self.completed_at
        if self.why_now:
            d["whyNow"] = self.why_now
        for key, value in self.extra.items():
            d.setdefault(key, value)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Story":
        """Create a Story from a prd.json entry.

        Args:
            d: Dictionary with story data.

        Returns:
            A Story instance.
        """
        criteria = d.get("acceptanceCriteria") or []
        if isinstance(criteria, str):
            criteria = [criteria]
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title", "")),
            description=str(d.get("description", "")),
            acceptance_criteria=[str(c) for c in criteria],
            status=str(d.get("status") or STATUS_OPEN),
            completed_at=d.get("completedAt"),
            why_now=d.get("whyNow"),
            extra={k: v for k, v in d.items() if k not in _STORY_KEYS},
        )


@dataclass
class Ledger:
    """The persistent work ledger: project metadata plus ordered stories.

    List order is priority order; nothing in twin reorders it.
    ``last_story_number`` is the highest id number ever issued, persisted as
    ``lastStoryNumber`` so ids of removed stories are never handed out again.
    """

    project: str = ""
    description: str = ""
    stories: List[Story] = field(default_factory=list)
    last_story_number: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def open_stories(self) -> List[Story]:
        """Stories not yet done, in ledger order."""
        return [s for s in self.stories if not s.is_done]

    def get(self, story_id: str) -> Optional[Story]:
        for story in self.stories:
            if story.id == story_id:
                return story
        return None

    def next_story_id(self) -> str:
        """Next id above both the issued high-water mark and any ``US-nnn`` present."""
        numbers = [story_number(s.id) for s in self.stories]
        highest = max((n for n in numbers if n is not None), default=0)
        return format_story_id(max(highest, self.last_story_number) + 1)

    def append_stories(
        self, incoming: Iterable[Union[Story, Dict[str, Any]]]
    ) -> List[Story]:
        """Append new stories at the end of the ledger.

        Every appended story gets a freshly issued id and starts open,
        whatever the source proposed, so ids stay unique and increasing.

        Args:
            incoming: Stories or raw dicts (e.g. from a model response).

        Returns:
            The stories as appended.
        """
        added: List[Story] = []
        next_number = story_number(self.next_story_id()) or 1
        for item in incoming:
            story = item if isinstance(item, Story) else Story.from_dict(item)
            story.id = format_story_id(next_number)
            story.status = STATUS_OPEN
            story.completed_at = None
            next_number += 1
            self.stories.append(story)
            added.append(story)
        if added:
            self.last_story_number = next_number - 1
        return added

    def summary(self) -> List[Dict[str, str]]:
        """Compact id/title/status view used in model requests."""
        return [
            {"id": s.id, "title": s.title, "status": s.status} for s in self.stories
        ]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "project": self.project,
            "description": self.description,
            "userStories": [s.to_dict() for s in self.stories],
        }
        if self.last_story_number:
            d["lastStoryNumber"] = self.last_story_number
        for key, value in self.extra.items():
            d.setdefault(key, value)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Ledger":
        stories = d.get("userStories") or []
        return cls(
            project=str(d.get("project", "")),
            description=str(d.get("description", "")),
            stories=[Story.from_dict(s) for s in stories if isinstance(s, dict)],
            last_story_number=_as_int(d.get("lastStoryNumber")),
            extra={k: v for k, v in d.items() if k not in _LEDGER_KEYS},
        )


__all__ = [
    "STATUS_OPEN",
    "STATUS_IN_PROGRESS",
    "STATUS_DONE",
    "STATUS_RANK",
    "STORY_ID_PREFIX",
    "Story",
    "Ledger",
    "format_story_id",
    "story_number",
    "utc_now_iso",
]
