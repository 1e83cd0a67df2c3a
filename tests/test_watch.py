"""Tests for watch.py: event dispatch, depth limits and session setup."""

import time
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from mirror_sync.operations import DIRECT
from mirror_sync.paths import IgnoreMatcher
from mirror_sync.watch import (
    MirrorEventHandler,
    SessionContext,
    WatchSession,
    WatchSetupError,
    exceeds_depth,
)
from tests.conftest import log_lines


@pytest.fixture
def context(src_root, mapper, mirror) -> SessionContext:
    return SessionContext(root=src_root, mapper=mapper, mirror=mirror, max_depth=20)


@pytest.fixture
def handler(context) -> MirrorEventHandler:
    return MirrorEventHandler(context)


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestEventDispatch:
    def test_file_created(self, handler, src_root, dest_root):
        (src_root / "notes.txt").write_text("hello")
        handler.on_created(FileCreatedEvent(str(src_root / "notes.txt")))
        assert (dest_root / "notes.txt").read_text() == "hello"

    def test_file_modified(self, handler, src_root, dest_root):
        (src_root / "notes.txt").write_text("v2")
        (dest_root / "notes.txt").write_text("v1")
        handler.on_modified(FileModifiedEvent(str(src_root / "notes.txt")))
        assert (dest_root / "notes.txt").read_text() == "v2"

    def test_directory_modified_is_ignored(self, handler, activity_log, src_root, dest_root):
        (src_root / "img").mkdir()
        handler.on_modified(DirModifiedEvent(str(src_root / "img")))
        assert not (dest_root / "img").exists()
        assert log_lines(activity_log) == []

    def test_directory_created_copies_contents(self, handler, src_root, dest_root):
        (src_root / "img" / "raw").mkdir(parents=True)
        (src_root / "img" / "raw" / "photo.png").write_bytes(b"png")
        handler.on_created(DirCreatedEvent(str(src_root / "img")))
        assert (dest_root / "img" / "raw" / "photo.png").read_bytes() == b"png"

    def test_file_deleted_with_parent_present(self, handler, activity_log, src_root, dest_root):
        (dest_root / "notes.txt").write_text("hello")
        handler.on_deleted(FileDeletedEvent(str(src_root / "notes.txt")))
        assert not (dest_root / "notes.txt").exists()
        assert any("REMOVED" in line and "notes.txt" in line for line in log_lines(activity_log))

    def test_file_deleted_with_parent_gone_is_kept(self, handler, src_root, dest_root):
        (dest_root / "sub").mkdir()
        (dest_root / "sub" / "notes.txt").write_text("hello")
        handler.on_deleted(FileDeletedEvent(str(src_root / "sub" / "notes.txt")))
        assert (dest_root / "sub" / "notes.txt").exists()

    def test_direct_guard_deletes_with_parent_gone(self, src_root, dest_root, mapper, mirror):
        handler = MirrorEventHandler(SessionContext(src_root, mapper, mirror, guard=DIRECT))
        (dest_root / "sub").mkdir()
        (dest_root / "sub" / "notes.txt").write_text("hello")
        handler.on_deleted(FileDeletedEvent(str(src_root / "sub" / "notes.txt")))
        assert not (dest_root / "sub" / "notes.txt").exists()

    def test_directory_deleted(self, handler, src_root, dest_root):
        (dest_root / "img").mkdir()
        (dest_root / "img" / "photo.png").write_bytes(b"png")
        handler.on_deleted(DirDeletedEvent(str(src_root / "img")))
        assert not (dest_root / "img").exists()

    def test_root_deletion_never_wipes_destination(self, handler, src_root, dest_root):
        (dest_root / "notes.txt").write_text("hello")
        handler.on_deleted(DirDeletedEvent(str(src_root)))
        assert (dest_root / "notes.txt").exists()

    def test_event_outside_root_is_ignored(self, handler, tmp_path, dest_root):
        outside = tmp_path / "elsewhere.txt"
        outside.write_text("x")
        handler.on_created(FileCreatedEvent(str(outside)))
        assert list(dest_root.iterdir()) == []

    def test_bytes_paths_are_accepted(self, handler, src_root, dest_root):
        (src_root / "notes.txt").write_text("hello")
        handler.on_created(FileCreatedEvent(str(src_root / "notes.txt").encode()))
        assert (dest_root / "notes.txt").exists()

    def test_moved_retracts_old_and_replicates_new(self, handler, src_root, dest_root):
        (src_root / "new.txt").write_text("moved")
        (dest_root / "old.txt").write_text("moved")
        handler.on_moved(FileMovedEvent(str(src_root / "old.txt"), str(src_root / "new.txt")))
        assert not (dest_root / "old.txt").exists()
        assert (dest_root / "new.txt").read_text() == "moved"

    def test_synthetic_child_move_is_covered_by_folder_move(self, handler, activity_log, src_root, dest_root):
        (src_root / "new").mkdir()
        (src_root / "new" / "a.txt").write_text("a")
        (dest_root / "old").mkdir()
        (dest_root / "old" / "a.txt").write_text("a")
        event = FileMovedEvent(str(src_root / "old" / "a.txt"), str(src_root / "new" / "a.txt"))
        event.is_synthetic = True
        lines_before = len(log_lines(activity_log))

        handler.on_moved(event)

        assert (dest_root / "old" / "a.txt").exists()
        assert not (dest_root / "new").exists()
        assert len(log_lines(activity_log)) == lines_before

    def test_excluded_log_file_events_are_dropped(self, src_root, dest_root, mapper, mirror):
        ctx = SessionContext(src_root, mapper, mirror, ignore=IgnoreMatcher(src_root, excluded=[src_root / "sync.log"]))
        handler = MirrorEventHandler(ctx)
        (src_root / "sync.log").write_text("[2024-01-01T00:00:00.000Z] SYNCED (x) y")
        handler.on_created(FileCreatedEvent(str(src_root / "sync.log")))
        handler.on_modified(FileModifiedEvent(str(src_root / "sync.log")))
        assert not (dest_root / "sync.log").exists()

    def test_ignored_paths(self, src_root, dest_root, mapper, mirror):
        ctx = SessionContext(src_root, mapper, mirror, ignore=IgnoreMatcher(src_root, ["*.swp"]))
        handler = MirrorEventHandler(ctx)
        (src_root / ".notes.txt.swp").write_text("x")
        handler.on_created(FileCreatedEvent(str(src_root / ".notes.txt.swp")))
        assert not (dest_root / ".notes.txt.swp").exists()

    def test_depth_limit(self, src_root, dest_root, mapper, mirror):
        handler = MirrorEventHandler(SessionContext(src_root, mapper, mirror, max_depth=1))
        (src_root / "a" / "b").mkdir(parents=True)
        (src_root / "a" / "ok.txt").write_text("ok")
        (src_root / "a" / "b" / "deep.txt").write_text("deep")

        handler.on_created(FileCreatedEvent(str(src_root / "a" / "ok.txt")))
        handler.on_created(FileCreatedEvent(str(src_root / "a" / "b" / "deep.txt")))

        assert (dest_root / "a" / "ok.txt").exists()
        assert not (dest_root / "a" / "b" / "deep.txt").exists()

    def test_depth_limit_off_when_polling(self, src_root, dest_root, mapper, mirror):
        handler = MirrorEventHandler(SessionContext(src_root, mapper, mirror, max_depth=1), enforce_depth=False)
        (src_root / "a" / "b").mkdir(parents=True)
        (src_root / "a" / "b" / "deep.txt").write_text("deep")
        handler.on_created(FileCreatedEvent(str(src_root / "a" / "b" / "deep.txt")))
        assert (dest_root / "a" / "b" / "deep.txt").exists()

    def test_vanished_file_does_not_raise(self, handler, activity_log, src_root):
        handler.on_created(FileCreatedEvent(str(src_root / "tmp123")))
        assert any("ERROR syncing" in line for line in log_lines(activity_log))


def test_exceeds_depth(tmp_path):
    (tmp_path / "a" / "b" / "c").mkdir(parents=True)
    assert not exceeds_depth(tmp_path, 3)
    assert exceeds_depth(tmp_path, 2)
    assert exceeds_depth(tmp_path, 1)


class TestWatchSession:
    def test_missing_root_fails_setup(self, tmp_path, mapper, mirror, activity_log):
        ctx = SessionContext(tmp_path / "unmounted", mapper, mirror)
        session = WatchSession(ctx, activity_log)
        with pytest.raises(WatchSetupError):
            session.start()
        assert not session.is_alive()

    def test_auto_falls_back_to_polling_for_deep_trees(self, src_root, mapper, mirror, activity_log):
        (src_root / "a" / "b" / "c").mkdir(parents=True)
        session = WatchSession(SessionContext(src_root, mapper, mirror, max_depth=1), activity_log, poll_interval=0.1)
        session.start()
        try:
            assert session.polling
            assert session.is_alive()
        finally:
            session.stop()
        assert any("using polling" in line for line in log_lines(activity_log))

    def test_polling_session_mirrors_live_changes(self, src_root, dest_root, mapper, mirror, activity_log):
        (src_root / "old.txt").write_text("old")
        (dest_root / "old.txt").write_text("old")
        session = WatchSession(
            SessionContext(src_root, mapper, mirror, max_depth=20),
            activity_log,
            observer="polling",
            poll_interval=0.1,
        )
        session.start()
        try:
            assert any("Real-time watching started for" in line for line in log_lines(activity_log))
            (src_root / "new.txt").write_text("fresh")
            (src_root / "old.txt").unlink()

            assert _wait_for(lambda: (dest_root / "new.txt").exists() and not (dest_root / "old.txt").exists())
            assert _wait_for(lambda: (dest_root / "new.txt").read_text() == "fresh")
        finally:
            session.stop()
        assert not session.is_alive()
