"""Dependent-shift cleanup after an agent is removed.

Shifts written by older releases reference their agent either by the bare
identifier or by a textual wrapper (``ObjectId("<id>")`` and
``new ObjectId("<id>")``). Matching here covers every encoding; new rows are
only ever written with the bare identifier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from database import Agent, Shift
from errors import DependencyCleanupFailure
from metrics import Metrics, NullMetrics
from tenancy import TenantScope

logger = logging.getLogger(__name__)

LEGACY_WRAPPER = re.compile(r"""^\s*(?:new\s+)?ObjectId\(\s*["']?([^"')\s]+)["']?\s*\)\s*$""")
SWEEP_CHUNK = 500


def canonical_agent_ref(raw: Optional[str]) -> str:
    """Strip any legacy wrapper so references compare by bare identifier."""
    label = str(raw or "").strip()
    match = LEGACY_WRAPPER.match(label)
    if match:
        return match.group(1)
    return label


def agent_ref_variants(agent_id: str) -> List[str]:
    bare = canonical_agent_ref(agent_id)
    return [
        bare,
        f'ObjectId("{bare}")',
        f'new ObjectId("{bare}")',
    ]


@dataclass
class CleanupReport:
    deleted_shift_count: int = 0
    orphans_removed: int = 0
    failures: List[DependencyCleanupFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures

    def as_dict(self) -> dict:
        return {
            "deletedShiftCount": self.deleted_shift_count,
            "orphansRemoved": self.orphans_removed,
            "cleanupComplete": self.complete,
        }


def delete_agent_shifts(session, scope: TenantScope, agent_id: str) -> int:
    stmt = delete(Shift).where(Shift.agent_ref.in_(agent_ref_variants(agent_id)))
    result = session.execute(scope.apply(stmt, Shift).execution_options(synchronize_session=False))
    session.commit()
    return int(result.rowcount or 0)


def find_orphan_shift_ids(session, scope: TenantScope) -> List[int]:
    valid: Set[str] = set(session.scalars(scope.apply(select(Agent.id), Agent)))
    rows = session.execute(scope.apply(select(Shift.id, Shift.agent_ref), Shift))
    return [shift_id for shift_id, agent_ref in rows if canonical_agent_ref(agent_ref) not in valid]


def sweep_orphan_shifts(session, scope: TenantScope) -> int:
    """Delete shifts in scope whose agent reference matches no existing agent."""
    orphan_ids = find_orphan_shift_ids(session, scope)
    removed = 0
    for offset in range(0, len(orphan_ids), SWEEP_CHUNK):
        chunk = orphan_ids[offset : offset + SWEEP_CHUNK]
        stmt = delete(Shift).where(Shift.id.in_(chunk))
        result = session.execute(scope.apply(stmt, Shift).execution_options(synchronize_session=False))
        removed += int(result.rowcount or 0)
    session.commit()
    logger.info("[cleanup-orphans] tenant=%s removed=%d", scope.tenant_id or "*", removed)
    return removed


def cleanup_after_agent_delete(
    session,
    scope: TenantScope,
    agent_id: str,
    *,
    metrics: Metrics | None = None,
) -> CleanupReport:
    """Run the direct cascade then the orphan sweep.

    The agent row is already gone when this runs. Failures are logged and
    recorded on the report; nothing here raises back into the delete path.
    """
    metrics = metrics or NullMetrics()
    report = CleanupReport()
    try:
        report.deleted_shift_count = delete_agent_shifts(session, scope, agent_id)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("cascade delete failed for agent %s", agent_id)
        report.failures.append(DependencyCleanupFailure("cascade", 0, exc))
    try:
        report.orphans_removed = sweep_orphan_shifts(session, scope)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("orphan sweep failed after deleting agent %s", agent_id)
        report.failures.append(DependencyCleanupFailure("orphan-sweep", report.deleted_shift_count, exc))
    metrics.increment("cascade.shifts_deleted", report.deleted_shift_count)
    metrics.increment("cascade.orphans_removed", report.orphans_removed)
    if report.failures:
        metrics.increment("cascade.failures", len(report.failures))
    return report
