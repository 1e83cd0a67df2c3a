"""
Mirror operations against the destination tree.

replicate() copies a source file or directory tree onto its destination
path, retract() removes a destination entry once a delete guard allows it.
Neither raises for I/O problems: each returns a MirrorResult, which is also
handed to the activity log.
"""

from __future__ import annotations

import enum
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from .paths import IgnoreMatcher, relative

if TYPE_CHECKING:
    from .activity import ActivityLog


class Outcome(enum.Enum):
    SYNCED = "SYNCED"
    REMOVED = "REMOVED"
    SKIPPED = "SKIPPED"
    ABSENT = "ABSENT"
    FAILED = "ERROR"


@dataclass(frozen=True)
class ItemFailure:
    path: Path
    message: str


@dataclass(frozen=True)
class MirrorResult:
    outcome: Outcome
    operation: str  # "sync" | "remove"
    destination: Path
    source: Optional[Path] = None
    root: Optional[Path] = None
    reason: str = ""
    failures: tuple[ItemFailure, ...] = field(default_factory=tuple)
    is_dir: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    @property
    def display_path(self) -> Path:
        return self.source if self.source is not None else self.destination

    def label(self) -> str:
        if self.root is not None and self.source is not None:
            return f"({self.root}) {relative(self.root, self.source)}"
        return f"(destination only) {self.destination}"


# -------------------------
# Delete guards
# -------------------------

@dataclass(frozen=True)
class DeleteGuard:
    """Decides whether a source-side removal is trusted enough to delete the mirror copy."""

    name: str
    check: Callable[[Path], bool]
    refusal: str = ""

    def allows(self, source: Path) -> bool:
        return self.check(source)


def _parent_still_present(source: Path) -> bool:
    # A vanished parent usually means the share went away, not that the user deleted the file.
    return source.parent.is_dir()


CONSERVATIVE = DeleteGuard("conservative", _parent_still_present, "parent folder missing locally")
DIRECT = DeleteGuard("direct", lambda source: True)

GUARDS = {g.name: g for g in (CONSERVATIVE, DIRECT)}


def get_guard(name: str) -> DeleteGuard:
    try:
        return GUARDS[name]
    except KeyError:
        raise ValueError(f"Unknown delete guard {name!r} (expected one of {', '.join(GUARDS)})") from None


# -------------------------
# Filesystem helpers
# -------------------------

def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def remove_entry(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _tree_failures(error: shutil.Error) -> tuple[ItemFailure, ...]:
    failures = []
    for entry in error.args[0]:
        if isinstance(entry, tuple) and len(entry) == 3:
            src, _dst, why = entry
            failures.append(ItemFailure(Path(src), str(why)))
        else:
            failures.append(ItemFailure(Path("?"), str(entry)))
    return tuple(failures)


# -------------------------
# Mirror
# -------------------------

class Mirror:
    """
    Applies replicate/retract to the destination tree.

    Operations on the same destination path are serialized, across every
    watch session and the reconciler, since they all share one Mirror.
    """

    def __init__(self, log: "ActivityLog"):
        self.log = log
        # destination -> [lock, number of operations holding or waiting on it]
        self._locks: dict[Path, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, dst: Path) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(dst)
            if entry is None:
                entry = self._locks[dst] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[dst]

    def replicate(
        self,
        root: Path,
        source: Path,
        destination: Path,
        ignore: Optional[IgnoreMatcher] = None,
    ) -> MirrorResult:
        with self._locked(destination):
            result = self._replicate(root, source, destination, ignore)
        self.log.report(result)
        return result

    def retract(
        self,
        root: Optional[Path],
        source: Optional[Path],
        destination: Path,
        guard: DeleteGuard = CONSERVATIVE,
    ) -> MirrorResult:
        with self._locked(destination):
            result = self._retract(root, source, destination, guard)
        self.log.report(result)
        return result

    def _replicate(
        self,
        root: Path,
        source: Path,
        destination: Path,
        ignore: Optional[IgnoreMatcher],
    ) -> MirrorResult:
        is_dir = False

        def failed(path: Path, e: Exception) -> MirrorResult:
            return MirrorResult(
                Outcome.FAILED, "sync", destination, source, root,
                failures=(ItemFailure(path, str(e)),), is_dir=is_dir,
            )

        try:
            is_dir = source.is_dir()
            if not is_dir and not source.is_file():
                raise FileNotFoundError(f"source missing or not a regular file: {source}")

            ensure_parent(destination)
            if destination.exists() and destination.is_dir() != is_dir:
                remove_entry(destination)

            if is_dir:
                shutil.copytree(
                    source,
                    destination,
                    dirs_exist_ok=True,
                    ignore=ignore.names_to_skip if ignore is not None else None,
                    copy_function=shutil.copy2,
                )
            else:
                shutil.copy2(source, destination)
        except shutil.Error as e:
            return MirrorResult(
                Outcome.FAILED, "sync", destination, source, root,
                failures=_tree_failures(e), is_dir=is_dir,
            )
        except OSError as e:
            return failed(source, e)

        return MirrorResult(Outcome.SYNCED, "sync", destination, source, root, is_dir=is_dir)

    def _retract(
        self,
        root: Optional[Path],
        source: Optional[Path],
        destination: Path,
        guard: DeleteGuard,
    ) -> MirrorResult:
        is_dir = False
        try:
            if source is not None and not guard.allows(source):
                return MirrorResult(Outcome.SKIPPED, "remove", destination, source, root, reason=guard.refusal)

            if not destination.exists() and not destination.is_symlink():
                return MirrorResult(Outcome.ABSENT, "remove", destination, source, root)

            is_dir = destination.is_dir()
            remove_entry(destination)
        except OSError as e:
            return MirrorResult(
                Outcome.FAILED, "remove", destination, source, root,
                failures=(ItemFailure(destination, str(e)),), is_dir=is_dir,
            )
        return MirrorResult(Outcome.REMOVED, "remove", destination, source, root, is_dir=is_dir)
