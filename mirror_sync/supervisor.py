"""Startup sequence and process lifetime for the mirror service."""

from __future__ import annotations

import logging
import time
from typing import Optional

from .activity import ActivityLog
from .config import AppConfig
from .operations import Mirror, get_guard
from .paths import LAYOUT_SHARED, IgnoreMatcher, PathMapper
from .reconcile import Reconciler, find_collisions
from .watch import SessionContext, WatchSession, WatchSetupError


class Supervisor:
    def __init__(self, config: AppConfig, log: ActivityLog):
        self.config = config
        self.log = log
        self.mapper = PathMapper(config.destination_root, config.root_layout)
        self.mirror = Mirror(log)
        self.guard = get_guard(config.delete_guard)
        self.reconciler = Reconciler(
            self.mapper, self.mirror, log, config.ignore_patterns, excluded=(config.log_file,)
        )
        self.sessions: list[WatchSession] = []

    def _report_config(self) -> None:
        cfg = self.config
        self.log.record(f"Watching local folders: {', '.join(str(r) for r in cfg.source_roots)}")
        self.log.record(f"Syncing to network folder: {cfg.destination_root}")

        for rejected in cfg.rejected_roots:
            self.log.record(
                f"ERROR source folder {rejected.path} {rejected.reason}; it will not be synced",
                level=logging.ERROR,
            )
        if not cfg.source_roots:
            self.log.record("No usable source folders configured; nothing to watch.", level=logging.WARNING)

        if cfg.root_layout == LAYOUT_SHARED:
            for name, roots in find_collisions(cfg.source_roots).items():
                self.log.record(
                    f"COLLISION: '{name}' exists in {', '.join(str(r) for r in roots)}; "
                    "these roots overwrite each other in the destination",
                    level=logging.WARNING,
                )

    def _ensure_destination(self) -> bool:
        try:
            self.config.destination_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.log.record(
                f"ERROR cannot create network folder {self.config.destination_root}: {e}; nothing will be synced",
                level=logging.ERROR,
            )
            return False
        return True

    def _context_for(self, root) -> SessionContext:
        return SessionContext(
            root=root,
            mapper=self.mapper,
            mirror=self.mirror,
            guard=self.guard,
            ignore=IgnoreMatcher(root, self.config.ignore_patterns, excluded=(self.config.log_file,)),
            max_depth=self.config.watch_depth,
        )

    def start(self) -> list[WatchSession]:
        """Reconcile every root once, then start one watch session per root."""
        self._report_config()
        if not self._ensure_destination():
            return []

        roots = list(self.config.source_roots)
        self.reconciler.run(roots)
        if self.config.prune_on_start:
            self.reconciler.prune(roots)

        for root in roots:
            session = WatchSession(
                self._context_for(root),
                self.log,
                observer=self.config.observer,
                poll_interval=self.config.poll_interval,
            )
            try:
                session.start()
            except WatchSetupError as e:
                self.log.record(f"ERROR {e}", level=logging.ERROR, path=root, is_dir=True)
                continue
            self.sessions.append(session)

        self.log.record(f"Watching all folders ({self.guard.name} deletion enabled)...")
        return self.sessions

    def stop(self) -> None:
        for session in self.sessions:
            session.stop()
        self.sessions = []

    def run_forever(self, tick: float = 0.5, max_ticks: Optional[int] = None) -> None:
        """Block until interrupted (Ctrl+C). ``max_ticks`` bounds the wait for tests."""
        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                time.sleep(tick)
                ticks += 1
        except KeyboardInterrupt:
            self.log.record("Stopping...")
        finally:
            self.stop()
            self.log.record("Stopped.")
