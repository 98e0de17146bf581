from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import FrozenSet


# Installed copies should point this at a writable location.
DATA_DIR = Path(os.environ.get("SCHEDULER_DATA_DIR", str(Path(__file__).resolve().parent / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)

DATABASE_URL = os.environ.get(
    "SCHEDULER_DATABASE_URL",
    f"sqlite:///{(DATA_DIR / 'scheduler.db').as_posix()}",
)
EXPORT_DIR = Path(os.environ.get("SCHEDULER_EXPORT_DIR", str(DATA_DIR / "exports")))
LOG_LEVEL = os.environ.get("SCHEDULER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def _env_list(name: str, default: str) -> FrozenSet[str]:
    raw = os.environ.get(name, default)
    return frozenset(item.strip().lower() for item in raw.split(",") if item.strip())


# Off means the backend is treated as lacking transactions; bulk writes degrade.
ATOMIC_BULK = _env_flag("SCHEDULER_ATOMIC_BULK", True)
UNRESTRICTED_ROLES = _env_list("SCHEDULER_UNRESTRICTED_ROLES", "admin")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or LOG_LEVEL), format=LOG_FORMAT)
