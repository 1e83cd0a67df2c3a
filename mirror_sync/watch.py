"""
Live mirroring of one source root through watchdog.

Each WatchSession owns its own observer, so events for one root are
dispatched one at a time, in the order the observer delivers them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from .activity import ActivityLog
from .operations import CONSERVATIVE, DeleteGuard, Mirror
from .paths import IgnoreMatcher, PathMapper, relative


class WatchSetupError(RuntimeError):
    def __init__(self, root: Path, error: Exception):
        super().__init__(f"Could not start watching {root}: {error}")
        self.root = root
        self.error = error


@dataclass(frozen=True)
class SessionContext:
    """Everything an event handler needs to mirror one source root."""

    root: Path
    mapper: PathMapper
    mirror: Mirror
    guard: DeleteGuard = CONSERVATIVE
    ignore: Optional[IgnoreMatcher] = None
    max_depth: Optional[int] = None


def exceeds_depth(root: Path, max_depth: int) -> bool:
    """True if ``root`` has folders nested deeper than ``max_depth`` levels."""
    for dirpath, dirnames, _ in os.walk(root):
        depth = len(Path(dirpath).relative_to(root).parts)
        if depth >= max_depth and dirnames:
            return True
    return False


class MirrorEventHandler(FileSystemEventHandler):
    def __init__(self, context: SessionContext, enforce_depth: bool = True):
        super().__init__()
        self.context = context
        self.enforce_depth = enforce_depth

    def _source_path(self, raw, is_dir: bool) -> Optional[Path]:
        """The event path, or None when the event is not ours to mirror."""
        ctx = self.context
        src = Path(os.fsdecode(raw))
        try:
            rel = relative(ctx.root, src)
        except ValueError:
            return None
        if not rel.parts:
            # the root itself; never mirror a root-level create or delete
            return None
        if self.enforce_depth and ctx.max_depth is not None and len(rel.parts) - 1 > ctx.max_depth:
            return None
        if ctx.ignore is not None and ctx.ignore.is_ignored(src, is_dir=is_dir):
            return None
        return src

    def _replicate(self, raw, is_dir: bool) -> None:
        src = self._source_path(raw, is_dir)
        if src is None:
            return
        ctx = self.context
        ctx.mirror.replicate(ctx.root, src, ctx.mapper.map(ctx.root, src), ignore=ctx.ignore)

    def _retract(self, raw, is_dir: bool) -> None:
        src = self._source_path(raw, is_dir)
        if src is None:
            return
        ctx = self.context
        ctx.mirror.retract(ctx.root, src, ctx.mapper.map(ctx.root, src), guard=ctx.guard)

    def on_created(self, event: FileSystemEvent) -> None:
        self._replicate(event.src_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._replicate(event.src_path, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._retract(event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        if getattr(event, "is_synthetic", False):
            # emitted for each child of a moved folder; the folder move already covers it
            return
        self._retract(event.src_path, event.is_directory)
        self._replicate(event.dest_path, event.is_directory)


class WatchSession:
    """Subscription to change notifications for a single source root."""

    def __init__(
        self,
        context: SessionContext,
        log: ActivityLog,
        observer: str = "auto",
        poll_interval: float = 1.0,
    ):
        self.context = context
        self.log = log
        self.observer_mode = observer
        self.poll_interval = poll_interval
        self.observer: Optional[BaseObserver] = None
        self.polling = False

    @property
    def root(self) -> Path:
        return self.context.root

    def is_alive(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def _schedule(self, polling: bool) -> BaseObserver:
        if polling:
            observer = PollingObserver(timeout=self.poll_interval)
        else:
            observer = Observer()
        handler = MirrorEventHandler(self.context, enforce_depth=not polling)
        observer.schedule(handler, str(self.root), recursive=True)
        observer.start()
        return observer

    def start(self) -> None:
        root = self.root
        if not root.is_dir():
            raise WatchSetupError(root, FileNotFoundError(f"source folder is gone: {root}"))

        polling = self.observer_mode == "polling"
        max_depth = self.context.max_depth
        if self.observer_mode == "auto" and max_depth is not None:
            try:
                polling = exceeds_depth(root, max_depth)
            except OSError as e:
                raise WatchSetupError(root, e) from e
            if polling:
                self.log.record(
                    f"Folder tree deeper than {max_depth} levels, using polling: {root}",
                    level=logging.WARNING,
                    path=root,
                    is_dir=True,
                )

        try:
            self.observer = self._schedule(polling)
        except OSError as e:
            if polling or self.observer_mode != "auto":
                raise WatchSetupError(root, e) from e
            # usually the inotify watch limit
            self.log.record(
                f"Native watcher failed ({e}), using polling: {root}",
                level=logging.WARNING,
                path=root,
                is_dir=True,
            )
            polling = True
            try:
                self.observer = self._schedule(polling)
            except OSError as e2:
                raise WatchSetupError(root, e2) from e2

        self.polling = polling
        self.log.record(f"Real-time watching started for: {root}", path=root, is_dir=True)

    def stop(self, timeout: float = 10) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join(timeout=timeout)
        self.observer = None
