from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, Sequence

from uptime_archive.services.maintenance import MaintenanceGate, MaintenanceWindow
from uptime_archive.storage.archive import ArchiveReader, iter_days
from uptime_archive.storage.files import load_daily_summary, write_json_atomic
from uptime_archive.storage.models import (
    DailySummaryEntry,
    DailySummaryFile,
    HotWindow,
    Reading,
    State,
)

logger = logging.getLogger(__name__)

UPTIME_PRECISION = 4


def p95(values: Sequence[int]) -> int | None:
    """95th percentile by nearest rank."""
    if not values:
        return None
    ordered = sorted(values)
    rank = math.ceil(0.95 * len(ordered))
    return ordered[max(rank, 1) - 1]


def count_incidents(readings: Sequence[Reading]) -> int:
    """Transitions into ``down`` from any other state, in timestamp order."""
    incidents = 0
    previous: State | None = None
    for reading in sorted(readings, key=lambda item: item.timestamp):
        if reading.state is State.DOWN and previous is not None and previous is not State.DOWN:
            incidents += 1
        previous = reading.state
    return incidents


def aggregate_day(day: date, service: str, readings: Sequence[Reading]) -> DailySummaryEntry:
    """Roll up one service-day. ``readings`` must already exclude maintenance."""
    checks_total = len(readings)
    checks_passed = sum(1 for reading in readings if reading.state is State.UP)
    latencies = [reading.latency_ms for reading in readings if reading.latency_ms is not None]

    uptime_pct = round(checks_passed / checks_total, UPTIME_PRECISION) if checks_total else None
    avg_latency = round(sum(latencies) / len(latencies)) if latencies else None

    return DailySummaryEntry(
        date=day,
        service=service,
        uptime_pct=uptime_pct,
        avg_latency_ms=avg_latency,
        p95_latency_ms=p95(latencies),
        checks_total=checks_total,
        checks_passed=checks_passed,
        incident_count=count_incidents(readings),
    )


def _is_settled(existing: DailySummaryFile, day: date) -> bool:
    """Whether ``existing`` holds the final rollup for ``day``.

    True when the day had already closed when the file was written and the
    file's window reached back that far.
    """
    written = existing.last_updated.date()
    oldest = written - timedelta(days=existing.window_days - 1)
    return oldest <= day < written


class SummaryAggregator:
    def __init__(
        self,
        archives: ArchiveReader,
        output_path: Path,
        gate: MaintenanceGate | None = None,
    ) -> None:
        self.archives = archives
        self.output_path = output_path
        self.gate = gate or MaintenanceGate()

    def regenerate(
        self,
        window_days: int,
        now: datetime,
        hot: HotWindow,
        windows: Sequence[MaintenanceWindow] = (),
        *,
        reuse_existing: bool = True,
    ) -> DailySummaryFile:
        summary = self.compute(window_days, now, hot, windows, reuse_existing=reuse_existing)
        write_json_atomic(self.output_path, summary.to_document(), indent=2)
        logger.info(
            "daily summary regenerated",
            extra={"path": str(self.output_path), "services": len(summary.services), "window_days": window_days},
        )
        return summary

    def compute(
        self,
        window_days: int,
        now: datetime,
        hot: HotWindow,
        windows: Sequence[MaintenanceWindow] = (),
        *,
        reuse_existing: bool = True,
    ) -> DailySummaryFile:
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        today = now.date()
        first_day = today - timedelta(days=window_days - 1)
        existing = load_daily_summary(self.output_path) if reuse_existing else None

        by_day: dict[date, list[DailySummaryEntry]] = {}
        reused = 0
        for day in iter_days(first_day, today - timedelta(days=1)):
            if existing is not None and _is_settled(existing, day):
                by_day[day] = existing.entries_for(day)
                reused += 1
            else:
                by_day[day] = self._entries(day, self.archives.read_day(day), windows)
        by_day[today] = self._entries(today, (r for r in hot.readings if r.day == today), windows)

        services: dict[str, list[DailySummaryEntry]] = {}
        for day in sorted(by_day):
            for entry in sorted(by_day[day], key=lambda item: item.service):
                services.setdefault(entry.service, []).append(entry)
        services = {
            name: entries[-window_days:] for name, entries in sorted(services.items())
        }
        logger.debug("summary days reused", extra={"reused": reused, "window_days": window_days})
        return DailySummaryFile(last_updated=now, window_days=window_days, services=services)

    def _entries(
        self, day: date, readings: Iterable[Reading], windows: Sequence[MaintenanceWindow]
    ) -> list[DailySummaryEntry]:
        grouped: dict[str, list[Reading]] = {}
        for reading in readings:
            bucket = grouped.setdefault(reading.service, [])
            if not self.gate.excludes(reading, windows):
                bucket.append(reading)
        return [aggregate_day(day, service, grouped[service]) for service in sorted(grouped)]
