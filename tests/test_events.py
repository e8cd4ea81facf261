import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from conftest import BASE_TIME, WATCHED, make_entry

from dirwatcher.entries import LocalDirent
from dirwatcher.events import Change, ChangeAction, EventGroup, format_timestamp


def test_format_timestamp_is_utc_with_milliseconds():
    stamp = datetime(2016, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert format_timestamp(stamp) == "2016-03-01T12:00:00.123Z"

    offset = datetime(2016, 3, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(offset) == "2016-03-01T12:00:00.000Z"


def test_event_group_wire_shape():
    now = datetime(2016, 3, 2, tzinfo=timezone.utc)
    changes = [
        Change(action=ChangeAction.CREATE, entry=make_entry("a.txt")),
        Change(action=ChangeAction.UPDATE, entry=make_entry("b.txt", "e2"), old_entry=make_entry("b.txt")),
        Change(action=ChangeAction.DELETE, old_entry=make_entry("c.txt")),
    ]

    group = EventGroup.from_changes(changes, watched_directory=WATCHED, time_event=now)

    assert group.to_dict() == {
        "events": [
            {
                "timeEvent": "2016-03-02T00:00:00.000Z",
                "action": "create",
                "name": "a.txt",
                "path": "/stor/inbox/a.txt",
                "mtime": format_timestamp(BASE_TIME),
            },
            {
                "timeEvent": "2016-03-02T00:00:00.000Z",
                "action": "update",
                "name": "b.txt",
                "path": "/stor/inbox/b.txt",
                "mtime": format_timestamp(BASE_TIME),
            },
            {
                "timeEvent": "2016-03-02T00:00:00.000Z",
                "action": "delete",
                "name": "c.txt",
                "path": "/stor/inbox/c.txt",
            },
        ]
    }
    assert json.loads(group.to_json()) == group.to_dict()


def test_delete_of_local_file_uses_watched_directory_for_path():
    local = LocalDirent(name="old.txt", path=Path("/tmp/mirror/old.txt"), size=3, mtime=0.0)
    group = EventGroup.from_changes(
        [Change(action=ChangeAction.DELETE, old_local=local)],
        watched_directory="/stor/inbox/",
    )
    (event,) = group.events
    assert event.name == "old.txt"
    assert event.path == "/stor/inbox/old.txt"
    assert event.mtime is None


def test_change_requires_an_identity():
    with pytest.raises(ValueError):
        Change(action=ChangeAction.DELETE)
    with pytest.raises(ValueError):
        Change(action=ChangeAction.CREATE, old_entry=make_entry("a"))
