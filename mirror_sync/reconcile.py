"""
Startup reconciliation: bring the destination up to date with each source root.

The pass only adds or overwrites. Entries that exist only in the destination
are left alone unless pruning is asked for explicitly.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .activity import ActivityLog
from .operations import DIRECT, Mirror, Outcome
from .paths import LAYOUT_PER_ROOT, IgnoreMatcher, PathMapper


@dataclass
class RootSummary:
    root: Path
    synced: int = 0
    failed: int = 0
    error: str = ""


class Reconciler:
    def __init__(
        self,
        mapper: PathMapper,
        mirror: Mirror,
        log: ActivityLog,
        ignore_patterns: Sequence[str] = (),
        excluded: Sequence[Path] = (),
    ):
        self.mapper = mapper
        self.mirror = mirror
        self.log = log
        self.ignore_patterns = tuple(ignore_patterns)
        self.excluded = tuple(excluded)

    def run(self, roots: Iterable[Path]) -> list[RootSummary]:
        summaries = [self.reconcile_root(root) for root in roots]
        self.log.record("Initial full sync completed for all folders.")
        return summaries

    def reconcile_root(self, root: Path) -> RootSummary:
        summary = RootSummary(root)
        self.log.record(f"FULL SYNC: start {root}")
        ignore = IgnoreMatcher(root, self.ignore_patterns, self.excluded)

        try:
            entries = sorted(root.iterdir())
        except OSError as e:
            summary.error = str(e)
            self.log.record(f"ERROR reading source folder {root}: {e}", level=logging.ERROR, path=root, is_dir=True)
            return summary

        for entry in entries:
            try:
                is_dir = entry.is_dir()
                if ignore.is_ignored(entry, is_dir=is_dir):
                    continue
                if not is_dir and not entry.is_file():
                    # sockets, fifos, broken links
                    continue
            except OSError as e:
                summary.failed += 1
                self.log.record(f"ERROR syncing {entry}: {e}", level=logging.ERROR, path=entry, is_dir=False)
                continue

            result = self.mirror.replicate(root, entry, self.mapper.map(root, entry), ignore=ignore)
            if result.ok:
                summary.synced += 1
            else:
                summary.failed += 1

        self.log.record(f"FULL SYNC: done {root} ({summary.synced} synced, {summary.failed} failed)")
        return summary

    # -------------------------
    # Stale entries
    # -------------------------

    def prune(self, roots: Sequence[Path]) -> int:
        """
        Retract destination entries that no source root has any more.

        Nothing is pruned while any root is unreachable: a missing root looks
        exactly like a root whose every file was deleted.
        """
        missing = [r for r in roots if not r.is_dir()]
        if missing:
            self.log.record(
                f"SKIPPED pruning (source folder unavailable): {', '.join(str(r) for r in missing)}",
                level=logging.WARNING,
            )
            return 0
        if not roots:
            return 0

        if self.mapper.layout == LAYOUT_PER_ROOT:
            return sum(self._prune_tree(self.mapper.base_for(root), [root]) for root in roots)
        return self._prune_tree(self.mapper.destination_root, list(roots))

    def _prune_tree(self, base: Path, roots: list[Path]) -> int:
        if not base.is_dir():
            return 0
        matchers = [IgnoreMatcher(root, self.ignore_patterns, self.excluded) for root in roots]
        removed = 0

        for dirpath, dirnames, filenames in os.walk(base):
            rel_dir = Path(dirpath).relative_to(base)
            for name in sorted(dirnames) + sorted(filenames):
                rel = rel_dir / name
                if self._has_source(rel, roots, matchers):
                    continue
                result = self.mirror.retract(None, None, base / rel, guard=DIRECT)
                if result.outcome is Outcome.REMOVED:
                    removed += 1
                if name in dirnames:
                    dirnames.remove(name)

        self.log.record(f"PRUNE: done {base} ({removed} removed)")
        return removed

    @staticmethod
    def _has_source(rel: Path, roots: list[Path], matchers: list[IgnoreMatcher]) -> bool:
        for root, ignore in zip(roots, matchers):
            candidate = root / rel
            if candidate.exists() and not ignore.is_ignored(candidate):
                return True
        return False


def find_collisions(roots: Sequence[Path]) -> dict[str, list[Path]]:
    """Top-level names that more than one root would write to the same destination path."""
    owners: dict[str, list[Path]] = defaultdict(list)
    for root in roots:
        try:
            names = [entry.name for entry in root.iterdir()]
        except OSError:
            continue
        for name in names:
            owners[name].append(root)
    return {name: rs for name, rs in sorted(owners.items()) if len(rs) > 1}
