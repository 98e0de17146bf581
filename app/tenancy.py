"""Tenant scoping threaded explicitly through every store call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from errors import ValidationError
from roles import DEFAULT_ROLE, is_unrestricted_role, normalize_role


@dataclass(frozen=True)
class TenantScope:
    tenant_id: Optional[str]
    role: str = DEFAULT_ROLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", normalize_role(self.role) or DEFAULT_ROLE)
        if not self.unrestricted and not self.tenant_id:
            raise ValidationError("A tenant is required for restricted roles.")

    @property
    def unrestricted(self) -> bool:
        return is_unrestricted_role(self.role)

    @classmethod
    def for_tenant(cls, tenant_id: str, role: str = DEFAULT_ROLE) -> "TenantScope":
        return cls(tenant_id=tenant_id, role=role)

    @classmethod
    def everything(cls, role: str = "admin") -> "TenantScope":
        return cls(tenant_id=None, role=role)

    def apply(self, stmt, model):
        """Intersect a select/update/delete statement with the caller's tenant."""
        if self.unrestricted:
            return stmt
        return stmt.where(model.tenant_id == self.tenant_id)

    def allows(self, tenant_id: Optional[str]) -> bool:
        return self.unrestricted or (tenant_id or "") == self.tenant_id
