from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Optional

from validation import parse_date, parse_time

FULL_DAY = datetime.timedelta(hours=24)


@dataclass(frozen=True)
class DurationInfo:
    duration_hours: float
    is_overnight: bool
    is_24h: bool

    @property
    def end_offset_days(self) -> int:
        return 1 if self.is_overnight else 0

    def end_date(self, start_date: datetime.date) -> Optional[datetime.date]:
        if not self.is_overnight:
            return None
        return start_date + datetime.timedelta(days=self.end_offset_days)

    def as_dict(self) -> dict:
        return {
            "durationHours": self.duration_hours,
            "isOvernight": self.is_overnight,
            "is24h": self.is_24h,
        }


def compute_duration(date: Any, start_time: Any, end_time: Any) -> DurationInfo:
    """Return elapsed hours and overnight/24h flags for a local wall-clock shift.

    An end at or before the start rolls into the next day, so equal times mean
    a full 24 hour shift rather than an empty one.
    """
    day = parse_date(date)
    start = datetime.datetime.combine(day, parse_time(start_time, "start"))
    end = datetime.datetime.combine(day, parse_time(end_time, "end"))
    is_overnight = False
    if end <= start:
        end += FULL_DAY
        is_overnight = True
    elapsed = end - start
    minutes = elapsed.total_seconds() // 60
    return DurationInfo(
        duration_hours=round(minutes / 60, 2),
        is_overnight=is_overnight,
        is_24h=elapsed == FULL_DAY,
    )
