"""
Activity log: the append-only audit trail of every sync action and error.

- Log file lines are plain: ``[<ISO-8601 UTC>] <message>``.
- Console output is styled when stdout is a terminal:
  - SYNCED green
  - REMOVED orange
  - SKIPPED light brown
  - errors red
- The log file is never rotated or truncated here.
"""

from __future__ import annotations

import datetime as dt
import logging
import sys
import threading
from pathlib import Path
from typing import IO, Optional

from colorama import just_fix_windows_console

from .operations import MirrorResult, Outcome

LOGGER_NAME = "mirror_sync.activity"

_console_ready = False
_console_guard = threading.Lock()


class LogSinkError(RuntimeError):
    """The activity log file could not be written before any entry landed in it."""

    def __init__(self, log_file: str, error: Exception):
        super().__init__(f"Cannot write activity log {log_file}: {error}")
        self.log_file = log_file
        self.error = error


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    Outcome.SYNCED.value: Ansi.GREEN,
    Outcome.REMOVED.value: Ansi.ORANGE,
    Outcome.SKIPPED.value: Ansi.LIGHT_BROWN,
    Outcome.FAILED.value: Ansi.RED,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except ValueError:
        # closed stream
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action:
            action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        path_text = getattr(record, "path_text", None)
        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if getattr(record, "is_dir", False) else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


class AuditFormatter(logging.Formatter):
    """``[2024-05-01T09:30:00.123Z] message``"""

    def __init__(self):
        super().__init__(fmt="[%(asctime)s] %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AuditFileHandler(logging.FileHandler):
    """
    Append-only file handler that refuses to lose the audit trail quietly.

    A write failure is always echoed to stderr. Until the first entry has been
    written successfully it is raised as LogSinkError so startup can stop.
    """

    def __init__(self, log_file: Path):
        super().__init__(log_file, mode="a", encoding="utf-8")
        self.committed = False

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self.stream is None:
                self.stream = self._open()
            self.stream.write(self.format(record) + self.terminator)
            self.flush()
        except RecursionError:
            raise
        except Exception as e:
            sys.stderr.write(f"ACTIVITY LOG WRITE FAILED ({self.baseFilename}): {e}\n")
            if not self.committed:
                raise LogSinkError(self.baseFilename, e) from e
            return
        self.committed = True


def _init_console() -> None:
    global _console_ready
    with _console_guard:
        if not _console_ready:
            just_fix_windows_console()
            _console_ready = True


# -------------------------
# Activity log
# -------------------------

class ActivityLog:
    def __init__(self, logger: logging.Logger, log_file: Path):
        self.logger = logger
        self.log_file = log_file

    @classmethod
    def open(cls, log_file: Path, console: Optional[IO[str]] = None) -> "ActivityLog":
        """Create the log file (and its folder) if needed and attach the file and console sinks."""
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        for old in list(logger.handlers):
            logger.removeHandler(old)
            old.close()

        _init_console()
        console = console if console is not None else sys.stdout

        fh = AuditFileHandler(log_file)
        fh.setFormatter(AuditFormatter())
        fh.setLevel(logging.INFO)

        fmt = "%(asctime)s | %(levelname)s | %(message)s"
        datefmt = "%Y-%m-%d %H:%M:%S"
        ch = logging.StreamHandler(console)
        ch.setLevel(logging.INFO)
        ch.setFormatter(ColorizingFormatter(use_color=_supports_color(console), fmt=fmt, datefmt=datefmt))

        logger.addHandler(fh)
        logger.addHandler(ch)
        return cls(logger, log_file)

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def record(
        self,
        message: str,
        level: int = logging.INFO,
        action: Optional[str] = None,
        path: Optional[Path] = None,
        is_dir: Optional[bool] = None,
    ) -> None:
        extra = {"action": action}
        if path is not None:
            extra["path_text"] = str(path)
            extra["is_dir"] = bool(is_dir) if is_dir is not None else path.is_dir()
        self.logger.log(level, message, extra=extra)

    def report(self, result: MirrorResult) -> None:
        """Render a mirror operation outcome as log lines."""
        outcome = result.outcome
        if outcome is Outcome.ABSENT:
            return

        if outcome is Outcome.FAILED:
            verb = "syncing" if result.operation == "sync" else "removing"
            for failure in result.failures:
                self.record(
                    f"ERROR {verb} {failure.path}: {failure.message}",
                    level=logging.ERROR,
                    action=outcome.value,
                    path=failure.path,
                    is_dir=False,
                )
            return

        if outcome is Outcome.SKIPPED:
            self.record(
                f"SKIPPED deletion ({result.reason}): {result.display_path}",
                level=logging.WARNING,
                action=outcome.value,
                path=result.display_path,
                is_dir=False,
            )
            return

        label = result.label()
        self.record(
            f"{outcome.value}: {label}",
            action=outcome.value,
            path=result.display_path,
            is_dir=result.is_dir,
        )
