from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import settings  # noqa: E402
from cascade import find_orphan_shift_ids, sweep_orphan_shifts  # noqa: E402
from database import SessionLocal, init_database  # noqa: E402
from tenancy import TenantScope  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Remove shifts whose agent no longer exists.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--tenant", help="Limit the sweep to one tenant.")
    target.add_argument("--all", action="store_true", help="Sweep every tenant.")
    parser.add_argument("--dry-run", action="store_true", help="Only report how many shifts would be removed.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings.configure_logging()
    init_database()
    scope = TenantScope.everything() if args.all else TenantScope.for_tenant(args.tenant)
    with SessionLocal() as session:
        if args.dry_run:
            count = len(find_orphan_shift_ids(session, scope))
            print(f"[sweep] {count} orphan shifts found (dry run).")
            return 0
        removed = sweep_orphan_shifts(session, scope)
    print(f"[sweep] Removed {removed} orphan shifts.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
