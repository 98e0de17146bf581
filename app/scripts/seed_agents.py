from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import settings  # noqa: E402
from agents import create_agent  # noqa: E402
from database import Agent, SessionLocal, init_database  # noqa: E402
from tenancy import TenantScope  # noqa: E402


SAMPLE_AGENTS: List[Dict[str, object]] = [
    {"name": "Ana Ribeiro", "phone": "11987654321", "document": "52998224725", "pix": "ana@example.com", "hourlyRate": 22.5},
    {"name": "Bruno Costa", "phone": "2133445566", "document": "11144477735", "pix": "bruno@example.com", "hourlyRate": 20.0},
    {"name": "Carla Mendes", "phone": "31999887766", "document": "39053344705", "pix": "carla@example.com", "hourlyRate": 18.0},
    {"name": "Diego Alves", "phone": "4132221100", "document": "15350946056", "pix": "diego@example.com", "hourlyRate": 25.0},
]


def seed_agents(tenant_id: str) -> int:
    init_database()
    scope = TenantScope.for_tenant(tenant_id)
    created = 0
    with SessionLocal() as session:
        for entry in SAMPLE_AGENTS:
            stmt = scope.apply(select(Agent).where(Agent.name == entry["name"]), Agent)
            if session.scalars(stmt).first():
                print(f"[seed] {entry['name']} already present, skipping.")
                continue
            create_agent(session, scope, entry, actor="seed")
            created += 1
    return created


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed demo agents for one tenant.")
    parser.add_argument("--tenant", required=True)
    args = parser.parse_args(argv)
    settings.configure_logging()
    created = seed_agents(args.tenant)
    print(f"Seed complete. Created {created} agents for tenant {args.tenant}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
