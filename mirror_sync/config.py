"""Configuration for the mirror service.

Reads settings from environment variables (a ``.env`` file is loaded into
the environment by the CLI before this module is consulted).

Environment variables:
    LOCAL_FOLDER: ``;``-separated absolute source roots (empty: nothing to watch)
    NETWORK_FOLDER: Absolute destination root (required)
    SYNC_LOG: Absolute activity log file, outside NETWORK_FOLDER (default: ~/.mirror_sync/sync.log)
    SYNC_DELETE_GUARD: ``conservative`` or ``direct`` (default: conservative)
    SYNC_WATCH_DEPTH: Max directory depth watched natively, 1-1000 (default: 20)
    SYNC_OBSERVER: ``auto``, ``native`` or ``polling`` (default: auto)
    SYNC_POLL_INTERVAL: Seconds between polling passes (default: 1.0)
    SYNC_PRUNE_ON_START: Remove destination-only entries at startup (default: false)
    SYNC_ROOT_LAYOUT: ``shared`` or ``per-root`` (default: shared)
    SYNC_IGNORE: ``,``-separated gitignore-style patterns (default: none)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .operations import GUARDS
from .paths import LAYOUT_PER_ROOT, LAYOUT_SHARED, LAYOUTS, is_within

APP_DIR = Path.home() / ".mirror_sync"
DEFAULT_LOG_FILE = APP_DIR / "sync.log"

ROOT_SEPARATOR = ";"
OBSERVER_MODES = ("auto", "native", "polling")
DEFAULT_WATCH_DEPTH = 20


class ConfigError(ValueError):
    """Configuration that makes startup impossible."""


@dataclass(frozen=True)
class RejectedRoot:
    path: str
    reason: str


@dataclass(frozen=True)
class AppConfig:
    destination_root: Path
    log_file: Path
    source_roots: tuple[Path, ...] = ()
    rejected_roots: tuple[RejectedRoot, ...] = ()
    delete_guard: str = "conservative"
    watch_depth: int = DEFAULT_WATCH_DEPTH
    observer: str = "auto"
    poll_interval: float = 1.0
    prune_on_start: bool = False
    root_layout: str = LAYOUT_SHARED
    ignore_patterns: tuple[str, ...] = field(default_factory=tuple)


def split_roots(raw: Optional[str]) -> list[str]:
    """Split the LOCAL_FOLDER value, dropping blanks."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(ROOT_SEPARATOR) if part.strip()]


def parse_csv(s: Optional[str]) -> list[str]:
    if not s:
        return []
    return [part.strip() for part in s.split(",") if part.strip()]


def _absolute_path(key: str, raw: Optional[str], default: Optional[Path] = None) -> Path:
    if raw is None or not raw.strip():
        if default is None:
            raise ConfigError(f"{key} is not set. Set the {key} environment variable.")
        return default
    path = Path(raw.strip()).expanduser()
    if not path.is_absolute():
        raise ConfigError(f"Invalid {key} '{raw}': must be an absolute path")
    return path.resolve()


def _choice(env: Mapping[str, str], key: str, choices: tuple[str, ...], default: str) -> str:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value not in choices:
        raise ConfigError(f"Invalid {key} '{raw}': must be one of {', '.join(choices)}")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ConfigError(f"Invalid {key} '{raw}': must be true or false")


def validate_roots(
    raw_roots: list[str],
    destination_root: Path,
    layout: str,
) -> tuple[tuple[Path, ...], tuple[RejectedRoot, ...]]:
    """Canonicalize source roots, keeping the usable ones and explaining the rest."""
    accepted: list[Path] = []
    rejected: list[RejectedRoot] = []
    namespaces: dict[str, Path] = {}

    for raw in raw_roots:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            rejected.append(RejectedRoot(raw, "not an absolute path"))
            continue
        path = path.resolve()
        if not path.exists():
            rejected.append(RejectedRoot(raw, "does not exist"))
            continue
        if not path.is_dir():
            rejected.append(RejectedRoot(raw, "is not a folder"))
            continue
        if path in accepted:
            rejected.append(RejectedRoot(raw, "listed more than once"))
            continue
        if is_within(destination_root, path):
            rejected.append(RejectedRoot(raw, "contains the destination folder (would cause loops)"))
            continue
        if is_within(path, destination_root):
            rejected.append(RejectedRoot(raw, "is inside the destination folder"))
            continue
        if layout == LAYOUT_PER_ROOT:
            other = namespaces.get(path.name)
            if other is not None:
                rejected.append(RejectedRoot(raw, f"has the same folder name as {other}"))
                continue
            namespaces[path.name] = path
        accepted.append(path)

    return tuple(accepted), tuple(rejected)


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build a validated AppConfig from the environment.

    Raises:
        ConfigError: If the destination or log file is missing or not
            absolute, the log file sits inside the destination, or an
            option has a malformed value. Unusable source
            roots are never fatal; they end up in ``rejected_roots``.
    """
    env = os.environ if environ is None else environ

    destination_root = _absolute_path("NETWORK_FOLDER", env.get("NETWORK_FOLDER"))
    log_file = _absolute_path("SYNC_LOG", env.get("SYNC_LOG"), default=DEFAULT_LOG_FILE)
    if is_within(log_file, destination_root):
        raise ConfigError(
            f"Invalid SYNC_LOG '{log_file}': must not be inside NETWORK_FOLDER ({destination_root})"
        )

    delete_guard = _choice(env, "SYNC_DELETE_GUARD", tuple(GUARDS), "conservative")
    observer = _choice(env, "SYNC_OBSERVER", OBSERVER_MODES, "auto")
    root_layout = _choice(env, "SYNC_ROOT_LAYOUT", LAYOUTS, LAYOUT_SHARED)
    prune_on_start = _bool(env, "SYNC_PRUNE_ON_START", False)

    depth_raw = env.get("SYNC_WATCH_DEPTH")
    if depth_raw is not None and depth_raw.strip():
        try:
            watch_depth = int(depth_raw)
        except ValueError:
            raise ConfigError(
                f"Invalid SYNC_WATCH_DEPTH '{depth_raw}': must be a number between 1 and 1000"
            ) from None
        if not (1 <= watch_depth <= 1000):
            raise ConfigError(
                f"Invalid SYNC_WATCH_DEPTH '{depth_raw}': must be a number between 1 and 1000"
            )
    else:
        watch_depth = DEFAULT_WATCH_DEPTH

    interval_raw = env.get("SYNC_POLL_INTERVAL")
    if interval_raw is not None and interval_raw.strip():
        try:
            poll_interval = float(interval_raw)
        except ValueError:
            raise ConfigError(f"Invalid SYNC_POLL_INTERVAL '{interval_raw}': must be a number of seconds") from None
        if poll_interval <= 0:
            raise ConfigError(f"Invalid SYNC_POLL_INTERVAL '{interval_raw}': must be greater than zero")
    else:
        poll_interval = 1.0

    source_roots, rejected_roots = validate_roots(
        split_roots(env.get("LOCAL_FOLDER")), destination_root, root_layout
    )

    return AppConfig(
        destination_root=destination_root,
        log_file=log_file,
        source_roots=source_roots,
        rejected_roots=rejected_roots,
        delete_guard=delete_guard,
        watch_depth=watch_depth,
        observer=observer,
        poll_interval=poll_interval,
        prune_on_start=prune_on_start,
        root_layout=root_layout,
        ignore_patterns=tuple(parse_csv(env.get("SYNC_IGNORE"))),
    )
