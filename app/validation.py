from __future__ import annotations

import datetime
import re
from typing import Any, Iterable, List

from errors import ValidationError

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_date(value: Any, field: str = "date") -> datetime.date:
    """Accept a date or a YYYY-MM-DD string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    label = str(value or "").strip()
    if not DATE_PATTERN.match(label):
        raise ValidationError(f"{field} must be YYYY-MM-DD")
    try:
        return datetime.date.fromisoformat(label)
    except ValueError as exc:
        raise ValidationError(f"{field} is not a valid calendar date") from exc


def parse_time(value: Any, field: str = "time") -> datetime.time:
    """Accept a time or an HH:mm wall-clock string."""
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    label = str(value or "").strip()
    match = TIME_PATTERN.match(label)
    if not match:
        raise ValidationError(f"{field} must be HH:mm")
    return datetime.time(int(match.group(1)), int(match.group(2)))


def format_time(value: datetime.time) -> str:
    return value.strftime("%H:%M")


def parse_hours(value: Any, field: str = "shiftLengths") -> float:
    try:
        hours = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} entries must be numbers") from exc
    if hours <= 0:
        raise ValidationError(f"{field} entries must be positive")
    return hours


def parse_time_list(values: Iterable[Any], field: str = "startTimes") -> List[datetime.time]:
    return [parse_time(value, field) for value in values]


def only_digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def validate_phone(phone: Any) -> bool:
    """Landlines carry 10 digits with area code, mobiles 11."""
    return len(only_digits(phone)) in (10, 11)


def validate_cpf(document: Any) -> bool:
    digits = only_digits(document)
    if len(digits) != 11:
        return False
    if digits == digits[0] * 11:
        return False
    for check_index in (9, 10):
        total = sum(int(digits[i]) * (check_index + 1 - i) for i in range(check_index))
        remainder = (total * 10) % 11
        if remainder == 10:
            remainder = 0
        if remainder != int(digits[check_index]):
            return False
    return True
