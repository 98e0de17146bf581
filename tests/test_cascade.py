from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path
from unittest import mock

from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import cascade  # noqa: E402
from agents import delete_agent, list_agents  # noqa: E402
from cascade import (  # noqa: E402
    agent_ref_variants,
    canonical_agent_ref,
    find_orphan_shift_ids,
    sweep_orphan_shifts,
)
from database import Agent, Shift, init_database  # noqa: E402
from errors import NotFound  # noqa: E402
from metrics import InMemoryMetrics  # noqa: E402
from notifications import PostCommitHooks, RecordingNotifier  # noqa: E402
from scripts.sweep_orphans import build_parser  # noqa: E402
from shift_store import list_shifts  # noqa: E402
from tenancy import TenantScope  # noqa: E402


class CascadeCleanupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        init_database(self.engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)()
        self.scope = TenantScope.for_tenant("t1")
        self.ana = self._add_agent("Ana", "t1")
        self.bruno = self._add_agent("Bruno", "t1")

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _add_agent(self, name: str, tenant: str) -> Agent:
        agent = Agent(name=name, tenant_id=tenant, hourly_rate=10.0)
        self.session.add(agent)
        self.session.commit()
        return agent

    def _add_shift(self, agent_ref: str, tenant: str = "t1", day: int = 1, hour: int = 8) -> Shift:
        shift = Shift(
            agent_ref=agent_ref,
            tenant_id=tenant,
            date=datetime.date(2024, 4, day),
            start_time=datetime.time(hour, 0),
            end_time=datetime.time(hour + 4, 0),
            duration_hours=4.0,
        )
        self.session.add(shift)
        self.session.commit()
        return shift

    def _stored_refs(self) -> list:
        return list(self.session.scalars(select(Shift.agent_ref).order_by(Shift.id)))

    def test_canonical_agent_ref_strips_legacy_wrappers(self) -> None:
        self.assertEqual(canonical_agent_ref("abc123"), "abc123")
        self.assertEqual(canonical_agent_ref('ObjectId("abc123")'), "abc123")
        self.assertEqual(canonical_agent_ref('new ObjectId("abc123")'), "abc123")
        self.assertEqual(canonical_agent_ref("ObjectId('abc123')"), "abc123")
        self.assertEqual(canonical_agent_ref("  abc123 "), "abc123")
        self.assertEqual(canonical_agent_ref(None), "")
        self.assertEqual(
            agent_ref_variants('ObjectId("abc123")'),
            ["abc123", 'ObjectId("abc123")', 'new ObjectId("abc123")'],
        )

    def test_delete_removes_shifts_in_every_encoding(self) -> None:
        self._add_shift(self.ana.id, day=1)
        self._add_shift(f'ObjectId("{self.ana.id}")', day=2)
        self._add_shift(f'new ObjectId("{self.ana.id}")', day=3)
        self._add_shift(self.bruno.id, day=1)
        metrics = InMemoryMetrics()

        outcome = delete_agent(self.session, self.scope, self.ana.id, metrics=metrics)

        self.assertEqual(outcome, {"deletedShiftCount": 3, "orphansRemoved": 0, "cleanupComplete": True})
        self.assertEqual(self._stored_refs(), [self.bruno.id])
        self.assertEqual(metrics.get("cascade.shifts_deleted"), 3)
        self.assertEqual([agent.name for agent in list_agents(self.session, self.scope)], ["Bruno"])

    def test_delete_also_sweeps_older_orphans(self) -> None:
        self._add_shift("ghost-agent", day=4)
        self._add_shift(self.ana.id, day=5)

        outcome = delete_agent(self.session, self.scope, self.ana.id)

        self.assertEqual(outcome["deletedShiftCount"], 1)
        self.assertEqual(outcome["orphansRemoved"], 1)
        self.assertEqual(list_shifts(self.session, self.scope), [])

    def test_delete_fires_post_commit_events(self) -> None:
        self._add_shift(self.ana.id)
        sink = RecordingNotifier()

        delete_agent(self.session, self.scope, self.ana.id, hooks=PostCommitHooks.for_notifier(sink))

        self.assertEqual([event["action"] for event in sink.events], ["delete", "bulk-delete"])
        self.assertEqual(sink.events[1]["count"], 1)

    def test_orphans_never_surface_after_a_sweep(self) -> None:
        self._add_shift("missing", day=1)
        self._add_shift(f'ObjectId("{self.bruno.id}")', day=2)

        self.assertEqual(len(find_orphan_shift_ids(self.session, self.scope)), 1)
        removed = sweep_orphan_shifts(self.session, self.scope)

        self.assertEqual(removed, 1)
        self.assertEqual(find_orphan_shift_ids(self.session, self.scope), [])
        self.assertEqual(list_shifts(self.session, self.scope, agent_id="missing"), [])
        self.assertEqual(len(list_shifts(self.session, self.scope, agent_id=self.bruno.id)), 1)

    def test_sweep_stays_inside_the_tenant(self) -> None:
        self._add_shift("missing", tenant="t1")
        self._add_shift("missing", tenant="t2")
        # An agent in another tenant does not rescue a shift that claims it here.
        self._add_agent("Carla", "t2")
        carla_id = self.session.scalars(select(Agent.id).where(Agent.name == "Carla")).one()
        self._add_shift(carla_id, tenant="t1", day=2)

        removed = sweep_orphan_shifts(self.session, self.scope)

        self.assertEqual(removed, 2)
        remaining = list(self.session.scalars(select(Shift.tenant_id)))
        self.assertEqual(remaining, ["t2"])

    def test_unrestricted_sweep_covers_every_tenant(self) -> None:
        self._add_shift("missing", tenant="t1")
        self._add_shift("missing", tenant="t2")

        removed = sweep_orphan_shifts(self.session, TenantScope.everything())

        self.assertEqual(removed, 2)

    def test_cleanup_failure_keeps_the_agent_deleted(self) -> None:
        self._add_shift(self.ana.id)
        metrics = InMemoryMetrics()
        failure = OperationalError("DELETE FROM shifts", {}, Exception("database is locked"))

        with mock.patch.object(cascade, "delete_agent_shifts", side_effect=failure):
            with self.assertLogs("agents", level="ERROR"):
                outcome = delete_agent(self.session, self.scope, self.ana.id, metrics=metrics)

        self.assertFalse(outcome["cleanupComplete"])
        self.assertEqual(outcome["deletedShiftCount"], 0)
        # The sweep still ran and picked up the shift the cascade missed.
        self.assertEqual(outcome["orphansRemoved"], 1)
        self.assertEqual(metrics.get("cascade.failures"), 1)
        self.assertIsNone(self.session.get(Agent, self.ana.id))

    def test_cannot_delete_an_agent_from_another_tenant(self) -> None:
        self._add_shift(self.ana.id)

        with self.assertRaises(NotFound):
            delete_agent(self.session, TenantScope.for_tenant("t2"), self.ana.id)

        self.assertEqual(len(self._stored_refs()), 1)


class SweepCommandLineTests(unittest.TestCase):
    def test_a_target_is_required(self) -> None:
        with mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit):
                build_parser().parse_args([])
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["--tenant", "t1", "--all"])

    def test_dry_run_for_one_tenant(self) -> None:
        args = build_parser().parse_args(["--tenant", "t1", "--dry-run"])

        self.assertEqual(args.tenant, "t1")
        self.assertFalse(args.all)
        self.assertTrue(args.dry_run)


if __name__ == "__main__":
    unittest.main()
