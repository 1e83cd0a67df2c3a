"""
Command line entry point.

Usage
  mirror-sync
  mirror-sync --env-file /etc/mirror-sync.env
  python -m mirror_sync
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .activity import ActivityLog, LogSinkError
from .config import ConfigError, load_config
from .supervisor import Supervisor


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="mirror-sync",
        description="Mirror source folders onto a network folder and keep them in sync.",
    )
    p.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Read settings from this .env file (default: ./.env if present).",
    )
    return p.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    # real environment variables win over .env values
    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv(find_dotenv(usecwd=True))

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    try:
        log = ActivityLog.open(config.log_file)
        supervisor = Supervisor(config, log)
        supervisor.start()
    except (LogSinkError, OSError) as e:
        print(f"Activity log error: {e}", file=sys.stderr)
        return 2

    supervisor.run_forever()
    return 0
