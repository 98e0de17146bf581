from __future__ import annotations

from typing import Iterable

import settings


DEFAULT_ROLE = "operator"


def normalize_role(role: str) -> str:
    return (role or "").strip().lower()


def is_unrestricted_role(role: str, unrestricted: Iterable[str] | None = None) -> bool:
    """Return True when the role may read and write across every tenant."""
    label = normalize_role(role)
    if not label:
        return False
    allowed = {normalize_role(item) for item in (unrestricted if unrestricted is not None else settings.UNRESTRICTED_ROLES)}
    return label in allowed
