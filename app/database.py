from __future__ import annotations

import datetime
import json
import secrets
import time
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.types import Time

import settings
from validation import format_time


AGENT_STATUS_CHOICES = ("available", "scheduled", "unavailable")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_agent_id() -> str:
    """24 hex characters, the same width as identifiers found in legacy exports."""
    return secrets.token_hex(12)


def new_request_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class Base(DeclarativeBase):
    """Metadata for agent/shift/audit tables living in scheduler.db."""

    pass


class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_agent_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    document: Mapped[str] = mapped_column(String(14), nullable=False, default="")
    pix: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    avatar_url: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="available")
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Free text: older rows carry wrapped identifiers, see cascade.agent_ref_variants.
    agent_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_overnight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_24h: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("agent_ref", "date", "start_time", "tenant_id", name="uq_shift_agent_day_start"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    entity: Mapped[str] = mapped_column(String(32), nullable=False, default="shifts")
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    beforeJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    afterJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def after_dict(self) -> Dict:
        try:
            value = json.loads(self.afterJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def _sqlite_connect(dbapi_connection, connection_record) -> None:
    # Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the outer transaction.
    dbapi_connection.isolation_level = None


def _sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def enable_sqlite_transactions(bind) -> None:
    if bind.dialect.name != "sqlite" or event.contains(bind, "begin", _sqlite_begin):
        return
    event.listen(bind, "connect", _sqlite_connect)
    event.listen(bind, "begin", _sqlite_begin)


enable_sqlite_transactions(engine)


def init_database(bind=None) -> None:
    bind = bind or engine
    enable_sqlite_transactions(bind)
    Base.metadata.create_all(bind)
    if bind.dialect.name != "sqlite":
        return
    with bind.begin() as conn:
        columns = {row[1]: True for row in conn.execute(text("PRAGMA table_info(shifts)"))}
        if "end_date" not in columns:
            conn.execute(text("ALTER TABLE shifts ADD COLUMN end_date DATE"))
        if "location" not in columns:
            conn.execute(text("ALTER TABLE shifts ADD COLUMN location VARCHAR(80) NOT NULL DEFAULT ''"))


def agent_to_dict(agent: Agent) -> Dict[str, Any]:
    return {
        "id": agent.id,
        "name": agent.name,
        "phone": agent.phone,
        "document": agent.document,
        "pix": agent.pix,
        "avatarUrl": agent.avatar_url,
        "hourlyRate": float(agent.hourly_rate or 0.0),
        "status": agent.status,
        "tenantId": agent.tenant_id,
    }


def shift_to_dict(shift: Shift, agent_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "agentId": shift.agent_ref,
        "agentName": agent_name,
        "tenantId": shift.tenant_id,
        "date": shift.date.isoformat(),
        "endDate": shift.end_date.isoformat() if shift.end_date else None,
        "start": format_time(shift.start_time),
        "end": format_time(shift.end_time),
        "durationHours": float(shift.duration_hours or 0.0),
        "isOvernight": bool(shift.is_overnight),
        "is24h": bool(shift.is_24h),
        "location": shift.location,
        "notes": shift.notes,
    }


def record_audit_log(
    session,
    user_id: str,
    entity: str,
    operation: str,
    target_id: Optional[str] = None,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        entity=entity,
        operation=operation,
        target_id=str(target_id) if target_id is not None else None,
        request_id=request_id,
        beforeJSON=json.dumps(before or {}, default=str),
        afterJSON=json.dumps(after or {}, default=str),
    )
    session.add(log)
    if commit:
        session.commit()
    return log
