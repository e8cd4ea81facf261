"""Change and event models produced by each poll."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from .entries import DirectoryEntry, LocalDirent, join_remote


class ChangeAction(str, Enum):
    """Types of changes detected between two states of the watched directory."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """A detected difference, not yet announced to the consumer.

    ``entry`` is the newly listed entry (create/update). A change against a
    previous snapshot carries ``old_entry``; a change found while reconciling
    against the local mirror carries ``old_local`` instead.
    """

    action: ChangeAction
    entry: Optional[DirectoryEntry] = None
    old_entry: Optional[DirectoryEntry] = None
    old_local: Optional[LocalDirent] = None
    diff: Optional[Dict[str, Tuple[Any, Any]]] = None

    def __post_init__(self) -> None:
        if self.entry is None and self.old_entry is None and self.old_local is None:
            raise ValueError(f"{self.action.value} change has no entry")
        if self.action is not ChangeAction.DELETE and self.entry is None:
            raise ValueError(f"{self.action.value} change requires the new entry")

    @property
    def name(self) -> str:
        if self.entry is not None:
            return self.entry.name
        if self.old_entry is not None:
            return self.old_entry.name
        if self.old_local is None:
            raise ValueError(f"{self.action.value} change has no entry")
        return self.old_local.name

    def remote_path(self, watched_directory: str) -> str:
        if self.entry is not None:
            return self.entry.path
        if self.old_entry is not None:
            return self.old_entry.path
        return join_remote(watched_directory, self.name)


@dataclass(frozen=True)
class Event:
    """The externally visible form of a change."""

    time_event: datetime
    action: ChangeAction
    name: str
    path: str
    mtime: Optional[datetime] = None

    @classmethod
    def from_change(cls, change: Change, *, time_event: datetime, watched_directory: str) -> "Event":
        mtime = None
        if change.action is not ChangeAction.DELETE and change.entry is not None:
            mtime = change.entry.mtime
        return cls(
            time_event=time_event,
            action=change.action,
            name=change.name,
            path=change.remote_path(watched_directory),
            mtime=mtime,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timeEvent": format_timestamp(self.time_event),
            "action": self.action.value,
            "name": self.name,
            "path": self.path,
        }
        if self.action is not ChangeAction.DELETE and self.mtime is not None:
            data["mtime"] = format_timestamp(self.mtime)
        return data


@dataclass(frozen=True)
class EventGroup:
    """All events produced by a single poll, delivered as one unit."""

    events: Tuple[Event, ...] = field(default_factory=tuple)

    @classmethod
    def from_changes(
        cls,
        changes: Iterable[Change],
        *,
        watched_directory: str,
        time_event: Optional[datetime] = None,
    ) -> "EventGroup":
        stamp = time_event or datetime.now(timezone.utc)
        return cls(
            events=tuple(
                Event.from_change(change, time_event=stamp, watched_directory=watched_directory)
                for change in changes
            )
        )

    def __len__(self) -> int:
        return len(self.events)

    def to_dict(self) -> Dict[str, Any]:
        return {"events": [event.to_dict() for event in self.events]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
