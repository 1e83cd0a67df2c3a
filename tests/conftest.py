"""Shared pytest fixtures for mirror-sync tests."""

import io
from pathlib import Path

import pytest

from mirror_sync.activity import ActivityLog
from mirror_sync.operations import Mirror
from mirror_sync.paths import PathMapper


@pytest.fixture
def src_root(tmp_path) -> Path:
    root = tmp_path / "data" / "a"
    root.mkdir(parents=True)
    return root.resolve()


@pytest.fixture
def dest_root(tmp_path) -> Path:
    root = tmp_path / "mirror"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def console():
    return io.StringIO()


@pytest.fixture
def activity_log(tmp_path, console):
    log = ActivityLog.open(tmp_path / "logs" / "sync.log", console=console)
    yield log
    log.close()


@pytest.fixture
def mirror(activity_log) -> Mirror:
    return Mirror(activity_log)


@pytest.fixture
def mapper(dest_root) -> PathMapper:
    return PathMapper(dest_root)


def log_lines(log: ActivityLog) -> list:
    """Lines currently in the activity log file."""
    return log.log_file.read_text(encoding="utf-8").splitlines()
