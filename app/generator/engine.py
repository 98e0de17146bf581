from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from durations import compute_duration
from errors import ValidationError
from validation import format_time, parse_date, parse_hours, parse_time_list

DEFAULT_START_TIMES = ("08:00",)
DEFAULT_SHIFT_LENGTHS = (8,)
MAX_SHIFT_HOURS = 24.0


def _whole_minutes(hours: float) -> float:
    # End times carry minute precision, so lengths must too.
    minutes = round(hours * 60)
    if minutes < 1:
        raise ValidationError("shiftLengths entries must be at least one minute")
    return minutes / 60


@dataclass(frozen=True)
class GenerationRequest:
    start_date: datetime.date
    start_times: Tuple[datetime.time, ...]
    shift_lengths: Tuple[float, ...]
    agent_ids: Tuple[str, ...]
    notes: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GenerationRequest":
        raw_date = payload.get("startDate") or payload.get("start_date")
        if not raw_date:
            raise ValidationError("startDate is required")
        start_date = parse_date(raw_date, "startDate")
        start_times = tuple(parse_time_list(payload.get("startTimes") or DEFAULT_START_TIMES))
        if len(set(start_times)) != len(start_times):
            raise ValidationError("startTimes must not repeat")
        lengths = tuple(
            _whole_minutes(parse_hours(value)) for value in (payload.get("shiftLengths") or DEFAULT_SHIFT_LENGTHS)
        )
        if any(hours > MAX_SHIFT_HOURS for hours in lengths):
            raise ValidationError(f"shiftLengths cannot exceed {MAX_SHIFT_HOURS:g} hours")
        agent_ids = tuple(str(value) for value in (payload.get("selectedAgentIds") or []) if str(value).strip())
        if not agent_ids:
            raise ValidationError("selectedAgentIds must name at least one agent")
        notes = payload.get("notes")
        return cls(
            start_date=start_date,
            start_times=start_times,
            shift_lengths=lengths,
            agent_ids=tuple(dict.fromkeys(agent_ids)),
            notes=None if notes is None else str(notes),
        )

    def length_for(self, index: int) -> float:
        """Pair start time ``index`` with its length, falling back to the first one."""
        if index < len(self.shift_lengths):
            return self.shift_lengths[index]
        return self.shift_lengths[0]


@dataclass(frozen=True)
class ShiftCandidate:
    agent_id: str
    agent_name: str
    tenant_id: str
    date: datetime.date
    start_time: datetime.time
    end_time: datetime.time
    duration_hours: float
    is_overnight: bool
    is_24h: bool
    end_date: Optional[datetime.date] = None
    notes: Optional[str] = None

    @property
    def key(self) -> Tuple[str, datetime.date, datetime.time, str]:
        return (self.agent_id, self.date, self.start_time, self.tenant_id)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "date": self.date.isoformat(),
            "start": format_time(self.start_time),
            "end": format_time(self.end_time),
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "notes": self.notes,
            "durationHours": self.duration_hours,
            "isOvernight": self.is_overnight,
            "is24h": self.is_24h,
        }
        if self.end_date is not None:
            payload["endDate"] = self.end_date.isoformat()
        return payload


@dataclass
class GenerationResult:
    candidates: List[ShiftCandidate] = field(default_factory=list)

    @property
    def schedule(self) -> List[Dict[str, Any]]:
        return [candidate.to_dict() for candidate in self.candidates]


def _agent_identity(agent: Any) -> Tuple[str, str, str]:
    if isinstance(agent, Mapping):
        agent_id = agent.get("id") or agent.get("_id")
        return str(agent_id), str(agent.get("name") or agent_id), str(agent.get("tenantId") or agent.get("tenant_id") or "")
    return str(agent.id), str(agent.name or agent.id), str(getattr(agent, "tenant_id", "") or "")


class ScheduleGenerator:
    """Plain cartesian expansion of start times by agents.

    Output order is start times (outer) then agents (inner), both as supplied,
    so identical requests always produce identical candidate lists.
    """

    def __init__(self, request: GenerationRequest) -> None:
        self.request = request

    def generate(self, agents: Sequence[Any]) -> GenerationResult:
        identities = [_agent_identity(agent) for agent in agents]
        seen = set()
        for agent_id, _, _ in identities:
            if agent_id in seen:
                raise ValidationError(f"Agent {agent_id} was supplied twice")
            seen.add(agent_id)

        request = self.request
        result = GenerationResult()
        for index, start_time in enumerate(request.start_times):
            hours = request.length_for(index)
            start_at = datetime.datetime.combine(request.start_date, start_time)
            end_at = start_at + datetime.timedelta(minutes=round(hours * 60))
            end_time = end_at.time()
            end_date = end_at.date() if end_at.date() != request.start_date else None
            info = compute_duration(request.start_date, start_time, end_time)
            for agent_id, agent_name, tenant_id in identities:
                result.candidates.append(
                    ShiftCandidate(
                        agent_id=agent_id,
                        agent_name=agent_name,
                        tenant_id=tenant_id,
                        date=request.start_date,
                        start_time=start_time,
                        end_time=end_time,
                        duration_hours=info.duration_hours,
                        is_overnight=info.is_overnight,
                        is_24h=info.is_24h,
                        end_date=end_date,
                        notes=request.notes,
                    )
                )
        return result


def generate_schedule(request: GenerationRequest, agents: Sequence[Any]) -> GenerationResult:
    return ScheduleGenerator(request).generate(agents)
