from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from uptime_archive.storage.files import (
    DAILY_SUMMARY_FILENAME,
    HOT_WINDOW_FILENAME,
    load_daily_summary,
    load_hot_window,
)
from uptime_archive.storage.models import DailySummaryEntry, DailySummaryFile, HotWindow, State


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    status: State
    last_checked: datetime
    uptime_pct: float | None
    avg_latency_ms: int | None
    sample_count: int


class StatusHistoryService:
    """Read side of the generated files, for the dashboard API."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def hot_window(self) -> HotWindow | None:
        return load_hot_window(self.output_dir / HOT_WINDOW_FILENAME)

    def daily_summary(self) -> DailySummaryFile | None:
        return load_daily_summary(self.output_dir / DAILY_SUMMARY_FILENAME)

    def services(self) -> list[ServiceStatus]:
        hot = self.hot_window()
        if hot is None:
            return []
        statuses = []
        for name, readings in sorted(hot.by_service().items()):
            latest = max(readings, key=lambda reading: reading.timestamp)
            counted = [reading for reading in readings if reading.state is not State.MAINTENANCE]
            up = [reading for reading in counted if reading.state is State.UP]
            latencies = [reading.latency_ms for reading in up if reading.latency_ms is not None]
            statuses.append(
                ServiceStatus(
                    name=name,
                    status=latest.state,
                    last_checked=latest.checked_at,
                    uptime_pct=round(len(up) / len(counted), 4) if counted else None,
                    avg_latency_ms=round(sum(latencies) / len(latencies)) if latencies else None,
                    sample_count=len(readings),
                )
            )
        return statuses

    def daily(self, service: str) -> list[DailySummaryEntry] | None:
        summary = self.daily_summary()
        if summary is None:
            return None
        return summary.services.get(service)
