from datetime import timedelta

from conftest import BASE_TIME, make_entry

from dirwatcher.diff import diff_entries, diff_snapshots
from dirwatcher.entries import EntryType
from dirwatcher.events import ChangeAction


def snapshot(*entries):
    return {entry.name: entry for entry in entries}


def actions(changes):
    return [(change.action, change.name) for change in changes]


def test_diff_of_identical_snapshots_is_empty():
    entries = [make_entry("a"), make_entry("b", "e2"), make_entry("d", None, type=EntryType.DIRECTORY)]
    assert diff_snapshots(snapshot(*entries), entries) == []


def test_mtime_only_change_is_not_an_update():
    old = make_entry("a", "e1", mtime=BASE_TIME)
    new = make_entry("a", "e1", mtime=BASE_TIME + timedelta(hours=1))
    assert diff_entries(old, new) is None
    assert diff_snapshots(snapshot(old), [new]) == []


def test_etag_and_type_changes_are_updates():
    old = make_entry("a", "e1")
    new = make_entry("a", "e2")
    changes = diff_snapshots(snapshot(old), [new])
    assert actions(changes) == [(ChangeAction.UPDATE, "a")]
    assert changes[0].old_entry is old
    assert changes[0].entry is new
    assert changes[0].diff == {"etag": ("e1", "e2")}

    as_dir = make_entry("a", "e1", type=EntryType.DIRECTORY)
    assert diff_entries(old, as_dir) == {"type": (EntryType.OBJECT, EntryType.DIRECTORY)}


def test_creates_and_updates_in_listing_order_then_deletes():
    old = snapshot(make_entry("gone1"), make_entry("keep"), make_entry("changed"), make_entry("gone2"))
    listing = [make_entry("new2"), make_entry("changed", "e9"), make_entry("keep"), make_entry("new1")]

    changes = diff_snapshots(old, listing)

    assert actions(changes) == [
        (ChangeAction.CREATE, "new2"),
        (ChangeAction.UPDATE, "changed"),
        (ChangeAction.CREATE, "new1"),
        (ChangeAction.DELETE, "gone1"),
        (ChangeAction.DELETE, "gone2"),
    ]


def test_create_update_and_delete_sets_are_disjoint():
    old = snapshot(make_entry("a"), make_entry("b"), make_entry("c"))
    listing = [make_entry("b", "e2"), make_entry("c"), make_entry("d")]

    changes = diff_snapshots(old, listing)
    by_action = {action: {c.name for c in changes if c.action is action} for action in ChangeAction}

    assert by_action[ChangeAction.CREATE] == {"d"}
    assert by_action[ChangeAction.UPDATE] == {"b"}
    assert by_action[ChangeAction.DELETE] == {"a"}


def test_delete_carries_old_entry():
    gone = make_entry("a")
    (change,) = diff_snapshots(snapshot(gone), [])
    assert change.action is ChangeAction.DELETE
    assert change.entry is None
    assert change.old_entry is gone


def test_objects_without_etags_fall_back_to_mtime():
    old = make_entry("a", None, mtime=BASE_TIME)
    new = make_entry("a", None, mtime=BASE_TIME + timedelta(seconds=5))
    assert diff_entries(old, new) == {"mtime": (old.mtime, new.mtime)}
    assert diff_entries(old, old) is None


def test_directories_without_etags_ignore_mtime():
    old = make_entry("d", None, type=EntryType.DIRECTORY, mtime=BASE_TIME)
    new = make_entry("d", None, type=EntryType.DIRECTORY, mtime=BASE_TIME + timedelta(seconds=5))
    assert diff_entries(old, new) is None


def test_etag_is_authoritative_when_only_one_side_has_it():
    old = make_entry("a", None)
    new = make_entry("a", "e1")
    assert diff_entries(old, new) == {"etag": (None, "e1")}
