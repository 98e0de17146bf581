from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import uvicorn

APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import settings  # noqa: E402
from database import init_database  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the agent shift scheduler API.")
    parser.add_argument("--host", default=os.environ.get("SCHEDULER_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("SCHEDULER_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on source changes (development only).")
    return parser


def launch_app(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings.configure_logging()
    init_database()
    print(f"[launcher] Starting scheduler API on {args.host}:{args.port}...")
    uvicorn.run(
        "api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        app_dir=str(APP_DIR),
        log_level=settings.LOG_LEVEL.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(launch_app())
