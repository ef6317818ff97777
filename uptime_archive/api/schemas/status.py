from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from uptime_archive.storage.models import State


class ReadingRead(BaseModel):
    t: int
    svc: str
    state: str
    code: int | None = None
    lat: int | None = None
    err: str | None = None


class HotWindowRead(BaseModel):
    version: int
    generated: dt.datetime
    readings: list[ReadingRead]


class ServiceStatusRead(BaseModel):
    name: str
    status: State
    last_checked: dt.datetime
    uptime_pct: float | None = Field(default=None, ge=0, le=1)
    avg_latency_ms: int | None = None
    sample_count: int

    model_config = ConfigDict(from_attributes=True)


class DailySummaryEntryRead(BaseModel):
    date: dt.date
    uptime_pct: float | None = Field(default=None, alias="uptimePct", ge=0, le=1)
    avg_latency_ms: int | None = Field(default=None, alias="avgLatencyMs")
    p95_latency_ms: int | None = Field(default=None, alias="p95LatencyMs")
    checks_total: int = Field(alias="checksTotal")
    checks_passed: int = Field(alias="checksPassed")
    incident_count: int = Field(alias="incidentCount")

    model_config = ConfigDict(populate_by_name=True)


class DailySummaryRead(BaseModel):
    version: int
    last_updated: dt.datetime = Field(alias="lastUpdated")
    window_days: int = Field(alias="windowDays")
    services: dict[str, list[DailySummaryEntryRead]]

    model_config = ConfigDict(populate_by_name=True)
