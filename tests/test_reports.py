from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Agent, Shift, init_database  # noqa: E402
from errors import ValidationError  # noqa: E402
from reports import aggregate, build_report  # noqa: E402
from tenancy import TenantScope  # noqa: E402


def _shift(agent_id: str, hours: float, day: str = "2024-04-01", start: str = "08:00", end: str = "20:00"):
    return {"agentId": agent_id, "durationHours": hours, "date": day, "start": start, "end": end}


def test_totals_per_agent_and_overall() -> None:
    agents = [
        {"id": "A", "name": "Alice", "hourlyRate": 20},
        {"id": "B", "name": "Bob", "hourlyRate": 15},
    ]
    shifts = [_shift("A", 8, end="16:00"), _shift("A", 4, day="2024-04-02", end="12:00"), _shift("B", 6, end="14:00")]

    report = aggregate(shifts, agents, "2024-04-01", "2024-04-30")

    rows = {row["agentName"]: row for row in report["summary"]}
    assert rows["Alice"]["totalHours"] == 12
    assert rows["Alice"]["totalAmount"] == 240
    assert rows["Bob"]["totalHours"] == 6
    assert rows["Bob"]["totalAmount"] == 90
    assert report["grandTotalHours"] == 18
    assert report["grandTotalAmount"] == 330
    assert report["period"] == "monthly"
    assert report["range"] == {"startDate": "2024-04-01", "endDate": "2024-04-30"}
    assert "generatedAt" in report


def test_agent_without_record_falls_back_to_raw_reference() -> None:
    report = aggregate([_shift("gone-42", 8)], [], period="weekly")

    assert report["summary"][0]["agentName"] == "gone-42"
    assert report["summary"][0]["totalAmount"] == 0
    assert report["grandTotalHours"] == 8
    assert report["period"] == "weekly"


def test_wrapped_references_join_the_agent() -> None:
    agents = [{"id": "abc", "name": "Alice", "hourlyRate": 10}]
    shifts = [_shift("abc", 2), _shift('ObjectId("abc")', 3, day="2024-04-02")]

    report = aggregate(shifts, agents)

    assert len(report["summary"]) == 1
    assert report["summary"][0]["totalHours"] == 5
    assert report["summary"][0]["totalAmount"] == 50
    assert [item["date"] for item in report["summary"][0]["items"]] == ["2024-04-01", "2024-04-02"]


def test_amounts_are_rounded_per_shift_before_summing() -> None:
    agents = [{"id": "A", "name": "Alice", "hourlyRate": 0.333}]
    shifts = [_shift("A", 1, day=f"2024-04-0{day}") for day in (1, 2, 3)]

    report = aggregate(shifts, agents)

    assert [item["amount"] for item in report["summary"][0]["items"]] == [0.33, 0.33, 0.33]
    assert report["summary"][0]["totalAmount"] == 0.99
    assert report["grandTotalAmount"] == 0.99


def test_empty_input_gives_zero_totals() -> None:
    report = aggregate([], [])

    assert report["summary"] == []
    assert report["grandTotalHours"] == 0
    assert report["grandTotalAmount"] == 0


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(engine)
    db = sessionmaker(bind=engine, expire_on_commit=False, future=True)()
    db.add_all(
        [
            Agent(id="a1", name="Alice", tenant_id="t1", hourly_rate=20.0),
            Agent(id="b2", name="Bob", tenant_id="t2", hourly_rate=15.0),
        ]
    )
    for agent_ref, tenant, day in (("a1", "t1", 1), ("a1", "t1", 20), ("b2", "t2", 2)):
        db.add(
            Shift(
                agent_ref=agent_ref,
                tenant_id=tenant,
                date=datetime.date(2024, 4, day),
                start_time=datetime.time(8, 0),
                end_time=datetime.time(14, 0),
                duration_hours=6.0,
            )
        )
    db.commit()
    yield db
    db.close()
    engine.dispose()


def test_build_report_is_tenant_scoped_and_date_bounded(session) -> None:
    report = build_report(session, TenantScope.for_tenant("t1"), "2024-04-01", "2024-04-10")

    assert [row["agentName"] for row in report["summary"]] == ["Alice"]
    assert report["grandTotalHours"] == 6
    assert report["grandTotalAmount"] == 120


def test_build_report_for_unrestricted_caller_spans_tenants(session) -> None:
    report = build_report(session, TenantScope.everything(), "2024-04-01", "2024-04-30")

    assert report["grandTotalHours"] == 18
    assert report["grandTotalAmount"] == 330


@pytest.mark.parametrize(
    "start,end",
    [(None, "2024-04-30"), ("2024-04-01", ""), ("2024-04-30", "2024-04-01"), ("April", "2024-04-30")],
)
def test_build_report_rejects_bad_ranges(session, start, end) -> None:
    with pytest.raises(ValidationError):
        build_report(session, TenantScope.for_tenant("t1"), start, end)
