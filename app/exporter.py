from __future__ import annotations

import csv
import datetime
import json
from pathlib import Path
from typing import Any, Dict

import settings


def _export_dir() -> Path:
    settings.EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    return settings.EXPORT_DIR


def _filename(report: Dict[str, Any], extension: str) -> Path:
    span = report.get("range") or {}
    start = span.get("startDate") or "start"
    end = span.get("endDate") or "end"
    stamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    return _export_dir() / f"report_{start}_{end}_{stamp}.{extension}"


def export_report(report: Dict[str, Any], format: str = "csv") -> Path:
    """Write an aggregated report as CSV (one row per agent plus totals) or JSON."""
    format = format.lower()
    if format not in {"csv", "json"}:
        raise ValueError("format must be 'csv' or 'json'")
    path = _filename(report, format)
    if format == "json":
        path.write_text(json.dumps(report, indent=2, sort_keys=True), encoding="utf-8")
        return path
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["agent", "shifts", "hours", "amount"])
        for row in report.get("summary", []):
            writer.writerow(
                [
                    row["agentName"],
                    len(row.get("items") or []),
                    f"{row['totalHours']:.2f}",
                    f"{row['totalAmount']:.2f}",
                ]
            )
        writer.writerow(
            [
                "TOTAL",
                sum(len(row.get("items") or []) for row in report.get("summary", [])),
                f"{report.get('grandTotalHours', 0.0):.2f}",
                f"{report.get('grandTotalAmount', 0.0):.2f}",
            ]
        )
    return path
