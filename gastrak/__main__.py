"""Run the price server: python -m gastrak --current=current.csv [--history=history.db]"""
from __future__ import annotations

import argparse
import sys

import uvicorn

from gastrak.config import SERVER_HOST, SERVER_PORT, ConfigError, settings_from_env
from gastrak.main import create_app


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="gastrak", description="Serve fuel price observations over HTTP.")
    parser.add_argument("--current", help="path to current data csv file")
    parser.add_argument("--history", help="path to history csv or sqlite db file")
    parser.add_argument("--interval", type=float, help="seconds between refreshes")
    parser.add_argument("--port", type=int, default=SERVER_PORT, help="port to listen on")
    args = parser.parse_args(argv)

    try:
        settings = settings_from_env()
        if args.current:
            settings.current_path = args.current
        if args.history:
            settings.history_path = args.history
        if args.interval is not None:
            settings.refresh_interval = args.interval
        settings.validate()
    except ConfigError as exc:
        print(f"usage error: {exc}", file=sys.stderr)
        return 1

    uvicorn.run(create_app(settings), host=SERVER_HOST, port=args.port, lifespan="on")
    return 0


if __name__ == "__main__":
    sys.exit(main())
