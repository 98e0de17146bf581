from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import or_, select

from cascade import canonical_agent_ref, cleanup_after_agent_delete
from database import AGENT_STATUS_CHOICES, Agent, agent_to_dict, record_audit_log
from errors import NotFound, ValidationError
from metrics import Metrics, NullMetrics
from notifications import PostCommitHooks
from tenancy import TenantScope
from validation import only_digits, validate_cpf, validate_phone

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "phone", "document", "pix")


def list_agents(
    session,
    scope: TenantScope,
    *,
    agent_ids: Optional[Iterable[str]] = None,
    query: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Agent]:
    """Agent source for generation and reports, always tenant scoped."""
    stmt = scope.apply(select(Agent), Agent)
    if agent_ids is not None:
        ids = [canonical_agent_ref(value) for value in agent_ids]
        stmt = stmt.where(Agent.id.in_(ids))
    if query:
        pattern = f"%{query.strip()}%"
        stmt = stmt.where(
            or_(Agent.name.ilike(pattern), Agent.phone.ilike(pattern), Agent.document.ilike(pattern))
        )
    if status:
        stmt = stmt.where(Agent.status == status)
    stmt = stmt.order_by(Agent.name.asc(), Agent.id.asc())
    return list(session.scalars(stmt))


def get_agent(session, scope: TenantScope, agent_id: str) -> Agent:
    stmt = scope.apply(select(Agent).where(Agent.id == canonical_agent_ref(agent_id)), Agent)
    agent = session.scalars(stmt).first()
    if agent is None:
        raise NotFound(f"Agent {agent_id} not found")
    return agent


def _parse_rate(value: Any) -> float:
    try:
        rate = round(float(value or 0.0), 2)
    except (TypeError, ValueError) as exc:
        raise ValidationError("hourlyRate must be a number") from exc
    if rate < 0:
        raise ValidationError("hourlyRate cannot be negative")
    return rate


def _validate_fields(payload: Mapping[str, Any]) -> None:
    if payload.get("document") and not validate_cpf(payload["document"]):
        raise ValidationError("document is not a valid CPF")
    if payload.get("phone") and not validate_phone(payload["phone"]):
        raise ValidationError("phone must have 10 or 11 digits")
    status = payload.get("status")
    if status and status not in AGENT_STATUS_CHOICES:
        raise ValidationError(f"status must be one of {', '.join(AGENT_STATUS_CHOICES)}")


def create_agent(
    session,
    scope: TenantScope,
    payload: Mapping[str, Any],
    *,
    actor: str = "system",
    hooks: PostCommitHooks | None = None,
) -> Agent:
    missing = [name for name in REQUIRED_FIELDS if not str(payload.get(name) or "").strip()]
    if missing:
        raise ValidationError(f"Required fields: {', '.join(missing)}")
    _validate_fields(payload)
    tenant_id = payload.get("tenantId") if scope.unrestricted and payload.get("tenantId") else scope.tenant_id
    agent = Agent(
        name=str(payload["name"]).strip(),
        phone=only_digits(payload["phone"]),
        document=only_digits(payload["document"]),
        pix=str(payload["pix"]).strip(),
        avatar_url=str(payload.get("avatarUrl") or ""),
        hourly_rate=_parse_rate(payload.get("hourlyRate")),
        status=payload.get("status") or "available",
        tenant_id=tenant_id or "",
    )
    session.add(agent)
    session.commit()
    session.refresh(agent)
    record_audit_log(session, actor, "agents", "create", agent.id, after=agent_to_dict(agent))
    if hooks:
        hooks.fire({"type": "agent", "action": "create", "agent": agent_to_dict(agent)})
    return agent


def update_agent(
    session,
    scope: TenantScope,
    agent_id: str,
    payload: Mapping[str, Any],
    *,
    actor: str = "system",
    hooks: PostCommitHooks | None = None,
) -> Agent:
    agent = get_agent(session, scope, agent_id)
    before = agent_to_dict(agent)
    _validate_fields(payload)
    if payload.get("name"):
        agent.name = str(payload["name"]).strip()
    if payload.get("phone"):
        agent.phone = only_digits(payload["phone"])
    if payload.get("document"):
        agent.document = only_digits(payload["document"])
    if payload.get("pix"):
        agent.pix = str(payload["pix"]).strip()
    if "avatarUrl" in payload:
        agent.avatar_url = str(payload.get("avatarUrl") or "")
    if "hourlyRate" in payload:
        agent.hourly_rate = _parse_rate(payload.get("hourlyRate"))
    if payload.get("status"):
        agent.status = payload["status"]
    session.commit()
    after = agent_to_dict(agent)
    record_audit_log(session, actor, "agents", "update", agent.id, before=before, after=after)
    if hooks:
        hooks.fire({"type": "agent", "action": "update", "agent": after})
    return agent


def delete_agent(
    session,
    scope: TenantScope,
    agent_id: str,
    *,
    actor: str = "system",
    metrics: Metrics | None = None,
    hooks: PostCommitHooks | None = None,
) -> Dict[str, Any]:
    """Delete the agent, then clean up its shifts as a separate follow-up.

    The agent stays deleted even when the cleanup reports failures.
    """
    metrics = metrics or NullMetrics()
    agent = get_agent(session, scope, agent_id)
    before = agent_to_dict(agent)
    session.delete(agent)
    session.commit()
    metrics.increment("agents.deleted")

    report = cleanup_after_agent_delete(session, scope, before["id"], metrics=metrics)
    if not report.complete:
        logger.error(
            "agent %s deleted but cleanup incomplete: %s",
            before["id"],
            "; ".join(str(failure) for failure in report.failures),
        )
    record_audit_log(
        session,
        actor,
        "agents",
        "delete",
        before["id"],
        before=before,
        after={"shiftsDeleted": report.deleted_shift_count, "orphansRemoved": report.orphans_removed},
    )
    if hooks:
        hooks.fire({"type": "agent", "action": "delete", "agentId": before["id"]})
        hooks.fire(
            {
                "type": "shift",
                "action": "bulk-delete",
                "agentId": before["id"],
                "count": report.deleted_shift_count,
            }
        )
    return report.as_dict()
