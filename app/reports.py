from __future__ import annotations

import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from cascade import canonical_agent_ref
from agents import list_agents
from errors import ValidationError
from shift_store import list_shifts
from tenancy import TenantScope
from validation import format_time, parse_date


def _field(item: Any, *names: str, default: Any = None) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    return default


def _label(value: Any) -> Any:
    if isinstance(value, datetime.time):
        return format_time(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def aggregate(
    shifts: Sequence[Any],
    agents: Sequence[Any],
    start_date: Any = None,
    end_date: Any = None,
    *,
    period: str = "monthly",
) -> Dict[str, Any]:
    """Per-agent and grand totals of hours and pay for the given shifts.

    Each shift's amount is rounded to cents before it is accumulated; totals
    are rounded again on output. Shifts whose agent is gone are reported
    under the raw reference with a zero rate.
    """
    agent_map = {str(_field(agent, "id", "_id")): agent for agent in agents}
    totals: Dict[str, Dict[str, Any]] = {}
    for shift in shifts:
        agent_id = canonical_agent_ref(_field(shift, "agent_ref", "agentId"))
        agent = agent_map.get(agent_id)
        rate = float(_field(agent, "hourly_rate", "hourlyRate", default=0.0) or 0.0) if agent else 0.0
        hours = float(_field(shift, "duration_hours", "durationHours", default=0.0) or 0.0)
        amount = round(rate * hours, 2)
        entry = totals.get(agent_id)
        if entry is None:
            entry = {
                "agentName": _field(agent, "name", default=agent_id) if agent else agent_id,
                "totalHours": 0.0,
                "totalAmount": 0.0,
                "items": [],
            }
            totals[agent_id] = entry
        entry["totalHours"] += hours
        entry["totalAmount"] += amount
        entry["items"].append(
            {
                "date": _label(_field(shift, "date")),
                "start": _label(_field(shift, "start_time", "start")),
                "end": _label(_field(shift, "end_time", "end")),
                "hours": hours,
                "amount": amount,
            }
        )

    summary: List[Dict[str, Any]] = [
        {
            "agentName": entry["agentName"],
            "totalHours": round(entry["totalHours"], 2),
            "totalAmount": round(entry["totalAmount"], 2),
            "items": entry["items"],
        }
        for entry in totals.values()
    ]
    return {
        "period": period,
        "range": {"startDate": _label(start_date), "endDate": _label(end_date)},
        "generatedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "summary": summary,
        "grandTotalHours": round(sum(row["totalHours"] for row in summary), 2),
        "grandTotalAmount": round(sum(row["totalAmount"] for row in summary), 2),
    }


def build_report(
    session,
    scope: TenantScope,
    start_date: Any,
    end_date: Any,
    *,
    period: str = "monthly",
    agent_id: Optional[str] = None,
) -> Dict[str, Any]:
    if not start_date or not end_date:
        raise ValidationError("startDate and endDate are required")
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")
    if end < start:
        raise ValidationError("endDate must not be before startDate")
    shifts = list_shifts(session, scope, start_date=start, end_date=end, agent_id=agent_id)
    agents = list_agents(session, scope)
    return aggregate(shifts, agents, start, end, period=period)
