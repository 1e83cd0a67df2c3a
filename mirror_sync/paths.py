"""
Path mapping between source roots and the destination root, plus
gitignore-style filtering of source paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from pathspec import PathSpec

LAYOUT_SHARED = "shared"
LAYOUT_PER_ROOT = "per-root"
LAYOUTS = (LAYOUT_SHARED, LAYOUT_PER_ROOT)


def relative(root: Path, path: Path) -> Path:
    """Path of ``path`` relative to ``root``; ValueError if it is not inside it."""
    return Path(path).relative_to(root)


def is_within(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


@dataclass(frozen=True)
class PathMapper:
    """
    Projects a path under a source root onto the destination root.

    With the shared layout every root lands directly under the destination,
    so two roots holding the same relative path write to the same place.
    The per-root layout nests each root under a folder named after it.
    """

    destination_root: Path
    layout: str = LAYOUT_SHARED

    def __post_init__(self) -> None:
        if self.layout not in LAYOUTS:
            raise ValueError(f"Unknown layout {self.layout!r} (expected one of {', '.join(LAYOUTS)})")

    def base_for(self, root: Path) -> Path:
        if self.layout == LAYOUT_PER_ROOT:
            return self.destination_root / root.name
        return self.destination_root

    def map(self, root: Path, path: Path) -> Path:
        return self.base_for(root) / relative(root, path)


class IgnoreMatcher:
    """gitignore-style rules for one root, plus absolute paths that are never mirrored."""

    def __init__(self, root: Path, patterns: Iterable[str] = (), excluded: Iterable[Path] = ()):
        self.root = root
        self.patterns = [p for p in patterns if p.strip()]
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns) if self.patterns else None
        self.excluded = frozenset(Path(p) for p in excluded)

    def is_ignored(self, path: Path, is_dir: Optional[bool] = None) -> bool:
        if path in self.excluded:
            return True
        if self.spec is None:
            return False
        try:
            rel = relative(self.root, path)
        except ValueError:
            return True
        rel_posix = rel.as_posix()
        if rel_posix == ".":
            return False
        if is_dir is None:
            is_dir = path.is_dir()
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)

    def names_to_skip(self, directory: str, names: list[str]) -> set[str]:
        """``shutil.copytree`` ignore callback."""
        if self.spec is None and not self.excluded:
            return set()
        base = Path(directory)
        return {n for n in names if self.is_ignored(base / n)}
