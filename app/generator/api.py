from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from agents import list_agents
from database import new_request_id
from errors import ValidationError
from metrics import Metrics, NullMetrics
from notifications import PostCommitHooks
from shift_store import bulk_upsert_shifts
from tenancy import TenantScope

from .engine import GenerationRequest, ScheduleGenerator

logger = logging.getLogger(__name__)


def generate_and_persist(
    session,
    scope: TenantScope,
    payload: Mapping[str, Any] | GenerationRequest,
    *,
    actor: str = "system",
    request_id: Optional[str] = None,
    atomic: Optional[bool] = None,
    metrics: Metrics | None = None,
    hooks: PostCommitHooks | None = None,
) -> Dict[str, Any]:
    """Expand a generation request and persist it idempotently.

    ``persistedCount`` only counts newly inserted shifts, so repeating the same
    request returns the full schedule with a count of zero.
    """
    metrics = metrics or NullMetrics()
    request_id = request_id or new_request_id()
    request = payload if isinstance(payload, GenerationRequest) else GenerationRequest.from_payload(payload)
    metrics.increment("generate.calls")

    agents = list_agents(session, scope, agent_ids=request.agent_ids)
    if not agents:
        raise ValidationError("None of the selected agents exist in this tenant.")
    missing = set(request.agent_ids) - {agent.id for agent in agents}
    if missing:
        logger.warning("[generate:%s] ignoring unknown agents: %s", request_id, ", ".join(sorted(missing)))

    result = ScheduleGenerator(request).generate(agents)
    upsert = bulk_upsert_shifts(
        session,
        scope,
        result.candidates,
        atomic=atomic,
        actor=actor,
        request_id=request_id,
        metrics=metrics,
        hooks=hooks,
    )
    return {
        "schedule": result.schedule,
        "persistedCount": upsert.inserted,
        "fallback": upsert.fallback,
        "requestId": request_id,
    }
