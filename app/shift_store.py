from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, NotSupportedError, SQLAlchemyError

import settings
from cascade import agent_ref_variants, canonical_agent_ref
from database import Agent, Shift, record_audit_log, shift_to_dict
from durations import compute_duration
from errors import NotFound, TransactionUnsupported, ValidationError
from generator.engine import ShiftCandidate
from metrics import Metrics, NullMetrics
from notifications import PostCommitHooks
from tenancy import TenantScope
from validation import parse_date, parse_time

logger = logging.getLogger(__name__)


@dataclass
class BulkUpsertResult:
    requested: int = 0
    inserted: int = 0
    failed: int = 0
    fallback: bool = False

    @property
    def matched(self) -> int:
        return self.requested - self.inserted - self.failed


@dataclass
class CreateResult:
    shift: Shift
    existed: bool


def _key_query(agent_ref: str, date: datetime.date, start_time: datetime.time, tenant_id: str):
    return select(Shift).where(
        Shift.agent_ref == agent_ref,
        Shift.date == date,
        Shift.start_time == start_time,
        Shift.tenant_id == tenant_id,
    )


def _find_by_key(session, candidate: ShiftCandidate) -> Optional[Shift]:
    return session.scalars(
        _key_query(candidate.agent_id, candidate.date, candidate.start_time, candidate.tenant_id)
    ).first()


def _shift_from_candidate(candidate: ShiftCandidate) -> Shift:
    return Shift(
        agent_ref=candidate.agent_id,
        tenant_id=candidate.tenant_id,
        date=candidate.date,
        end_date=candidate.end_date,
        start_time=candidate.start_time,
        end_time=candidate.end_time,
        duration_hours=candidate.duration_hours,
        is_overnight=candidate.is_overnight,
        is_24h=candidate.is_24h,
        notes=candidate.notes or "",
    )


def _apply_repeat(existing: Shift, candidate: ShiftCandidate) -> None:
    # Notes are the only field a repeated generation overwrites.
    if candidate.notes is not None:
        existing.notes = candidate.notes


def _upsert_in_transaction(session, candidate: ShiftCandidate) -> bool:
    existing = _find_by_key(session, candidate)
    if existing is None:
        try:
            with session.begin_nested():
                session.add(_shift_from_candidate(candidate))
            return True
        except IntegrityError:
            logger.info("slot %s taken concurrently; treating as existing", candidate.key)
            existing = _find_by_key(session, candidate)
            if existing is None:
                raise
    _apply_repeat(existing, candidate)
    return False


def _upsert_autocommit(session, candidate: ShiftCandidate) -> bool:
    existing = _find_by_key(session, candidate)
    if existing is None:
        session.add(_shift_from_candidate(candidate))
        try:
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            logger.info("slot %s taken concurrently; treating as existing", candidate.key)
            existing = _find_by_key(session, candidate)
            if existing is None:
                raise
    _apply_repeat(existing, candidate)
    session.commit()
    return False


def _check_scope(scope: TenantScope, candidates: Sequence[ShiftCandidate]) -> None:
    for candidate in candidates:
        if not scope.allows(candidate.tenant_id):
            raise ValidationError(f"Agent {candidate.agent_id} is outside the caller's tenant.")


def _bulk_atomic(session, candidates: Sequence[ShiftCandidate], atomic: bool) -> int:
    if not atomic:
        raise TransactionUnsupported("atomic bulk writes are disabled for this deployment")
    inserted = 0
    try:
        for candidate in candidates:
            if _upsert_in_transaction(session, candidate):
                inserted += 1
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    return inserted


def _bulk_best_effort(session, candidates: Sequence[ShiftCandidate], result: BulkUpsertResult) -> None:
    for candidate in candidates:
        try:
            if _upsert_autocommit(session, candidate):
                result.inserted += 1
        except SQLAlchemyError:
            session.rollback()
            result.failed += 1
            logger.exception("best-effort upsert failed for slot %s", candidate.key)


def bulk_upsert_shifts(
    session,
    scope: TenantScope,
    candidates: Sequence[ShiftCandidate],
    *,
    atomic: Optional[bool] = None,
    actor: str = "system",
    request_id: Optional[str] = None,
    metrics: Metrics | None = None,
    hooks: PostCommitHooks | None = None,
) -> BulkUpsertResult:
    """Insert-or-ignore every candidate keyed on agent/day/start/tenant.

    Returns how many rows were newly inserted; existing slots keep their
    stored fields apart from ``notes``. Runs in one transaction unless the
    backend cannot, in which case each slot is committed on its own.
    """
    metrics = metrics or NullMetrics()
    _check_scope(scope, candidates)
    result = BulkUpsertResult(requested=len(candidates))
    use_atomic = settings.ATOMIC_BULK if atomic is None else atomic
    try:
        result.inserted = _bulk_atomic(session, candidates, use_atomic)
    except (TransactionUnsupported, NotSupportedError) as exc:
        logger.warning(
            "[generate:%s] transactions unavailable (%s); falling back to unordered bulk write",
            request_id,
            exc,
        )
        result.fallback = True
        metrics.increment("shifts.bulk_fallback")
        _bulk_best_effort(session, candidates, result)

    record_audit_log(
        session,
        actor,
        "shifts",
        "generate",
        request_id=request_id,
        after={
            "requested": result.requested,
            "upsertedCount": result.inserted,
            "failed": result.failed,
            "fallback": result.fallback,
        },
    )
    metrics.increment("shifts.bulk_requested", result.requested)
    metrics.increment("shifts.bulk_inserted", result.inserted)
    logger.info(
        "[generate:%s] ops=%d upserted=%d failed=%d fallback=%s",
        request_id,
        result.requested,
        result.inserted,
        result.failed,
        result.fallback,
    )
    if hooks:
        hooks.fire({"type": "schedule", "action": "generate", "count": result.inserted})
    return result


def get_shift(session, scope: TenantScope, shift_id: int) -> Shift:
    stmt = scope.apply(select(Shift).where(Shift.id == shift_id), Shift)
    shift = session.scalars(stmt).first()
    if shift is None:
        raise NotFound(f"Shift {shift_id} not found")
    return shift


def list_shifts(
    session,
    scope: TenantScope,
    *,
    start_date: Any = None,
    end_date: Any = None,
    agent_id: Optional[str] = None,
) -> List[Shift]:
    stmt = scope.apply(select(Shift), Shift)
    if start_date:
        stmt = stmt.where(Shift.date >= parse_date(start_date, "startDate"))
    if end_date:
        stmt = stmt.where(Shift.date <= parse_date(end_date, "endDate"))
    if agent_id:
        stmt = stmt.where(Shift.agent_ref.in_(agent_ref_variants(agent_id)))
    stmt = stmt.order_by(Shift.date, Shift.start_time, Shift.id)
    return list(session.scalars(stmt))


def create_shift(
    session,
    scope: TenantScope,
    *,
    agent_id: str,
    date: Any,
    start: Any,
    end: Any,
    location: str = "",
    notes: str = "",
    actor: str = "system",
    request_id: Optional[str] = None,
    metrics: Metrics | None = None,
    hooks: PostCommitHooks | None = None,
) -> CreateResult:
    """Create one shift; an existing slot is returned untouched with ``existed=True``."""
    metrics = metrics or NullMetrics()
    if not agent_id or not date or not start or not end:
        raise ValidationError("agentId, date, start and end are required")
    day = parse_date(date)
    start_time = parse_time(start, "start")
    end_time = parse_time(end, "end")
    agent_ref = canonical_agent_ref(agent_id)
    agent = session.scalars(scope.apply(select(Agent).where(Agent.id == agent_ref), Agent)).first()
    if agent is None:
        raise NotFound(f"Agent {agent_id} not found")
    tenant_id = agent.tenant_id or ""

    info = compute_duration(day, start_time, end_time)
    existing = session.scalars(_key_query(agent_ref, day, start_time, tenant_id)).first()
    existed = existing is not None
    if existing is None:
        shift = Shift(
            agent_ref=agent_ref,
            tenant_id=tenant_id,
            date=day,
            end_date=info.end_date(day),
            start_time=start_time,
            end_time=end_time,
            duration_hours=info.duration_hours,
            is_overnight=info.is_overnight,
            is_24h=info.is_24h,
            location=location or "",
            notes=notes or "",
        )
        try:
            with session.begin_nested():
                session.add(shift)
        except IntegrityError:
            existing = session.scalars(_key_query(agent_ref, day, start_time, tenant_id)).first()
            if existing is None:
                raise
            existed = True
    if existed:
        shift = existing
        logger.info("[createShift:%s] slot already existed (shift %s)", request_id, shift.id)
        metrics.increment("shifts.create_noop")
    else:
        metrics.increment("shifts.created")
    session.commit()
    record_audit_log(
        session,
        actor,
        "shifts",
        "noop_exists" if existed else "create",
        shift.id,
        after=shift_to_dict(shift),
        request_id=request_id,
    )
    if hooks and not existed:
        hooks.fire({"type": "shift", "action": "create", "shift": shift_to_dict(shift, agent.name)})
    return CreateResult(shift=shift, existed=existed)


def update_shift(
    session,
    scope: TenantScope,
    shift_id: int,
    *,
    start: Any = None,
    end: Any = None,
    notes: Optional[str] = None,
    actor: str = "system",
    hooks: PostCommitHooks | None = None,
) -> Shift:
    """Edit start/end/notes and recompute every derived field.

    Agent and date never change here.
    """
    shift = get_shift(session, scope, shift_id)
    before = shift_to_dict(shift)
    start_time = parse_time(start, "start") if isinstance(start, str) else shift.start_time
    end_time = parse_time(end, "end") if isinstance(end, str) else shift.end_time
    info = compute_duration(shift.date, start_time, end_time)
    shift.start_time = start_time
    shift.end_time = end_time
    shift.duration_hours = info.duration_hours
    shift.is_overnight = info.is_overnight
    shift.is_24h = info.is_24h
    shift.end_date = info.end_date(shift.date)
    if isinstance(notes, str):
        shift.notes = notes
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValidationError("Another shift for this agent already starts at that time.") from exc
    after = shift_to_dict(shift)
    record_audit_log(session, actor, "shifts", "update", shift.id, before=before, after=after)
    if hooks:
        hooks.fire({"type": "shift", "action": "update", "shift": after})
    return shift


def delete_shift(
    session,
    scope: TenantScope,
    shift_id: int,
    *,
    actor: str = "system",
    hooks: PostCommitHooks | None = None,
) -> Dict[str, Any]:
    shift = get_shift(session, scope, shift_id)
    before = shift_to_dict(shift)
    session.delete(shift)
    session.commit()
    record_audit_log(session, actor, "shifts", "delete", shift_id, before=before)
    if hooks:
        hooks.fire({"type": "shift", "action": "delete", "shiftId": shift_id})
    return before


def count_shifts(session, scope: TenantScope, agent_ids: Iterable[str] | None = None) -> int:
    stmt = scope.apply(select(func.count(Shift.id)), Shift)
    if agent_ids is not None:
        refs = [ref for agent_id in agent_ids for ref in agent_ref_variants(agent_id)]
        stmt = stmt.where(Shift.agent_ref.in_(refs))
    return int(session.scalar(stmt) or 0)
