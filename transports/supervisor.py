"""Process supervisor transport: keeps the HTTP server alive, reloads it in development."""

from __future__ import annotations

import argparse
import asyncio
import sys

from fnruntime.logs import configure_logging
from fnruntime.runner import default_command, run_supervisor
from fnruntime.settings import get_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start, monitor and restart the function server.")
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Server command to supervise (default: the bundled uvicorn server).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    command = args.command
    if command and command[0] == "--":
        command = command[1:]

    settings = get_settings()
    configure_logging(settings.log_level)
    sys.exit(asyncio.run(run_supervisor(settings, command or default_command())))


if __name__ == "__main__":  # pragma: no cover - manual run helper
    main()
