"""
mirror-sync
- Mirrors one or more source folders onto a single destination folder.
- Full sync of every source folder on startup, then live mirroring via watchdog.
- Deletions propagate only when the delete guard trusts them (by default,
  the removed path's parent must still exist locally).
- Every action and error is appended to the activity log.
"""

__version__ = "0.1.0"

from .activity import ActivityLog, LogSinkError
from .config import AppConfig, ConfigError, load_config
from .operations import CONSERVATIVE, DIRECT, Mirror, MirrorResult, Outcome
from .paths import PathMapper
from .reconcile import Reconciler
from .supervisor import Supervisor
from .watch import WatchSession

__all__ = [
    "ActivityLog",
    "AppConfig",
    "CONSERVATIVE",
    "ConfigError",
    "DIRECT",
    "LogSinkError",
    "Mirror",
    "MirrorResult",
    "Outcome",
    "PathMapper",
    "Reconciler",
    "Supervisor",
    "WatchSession",
    "__version__",
]
