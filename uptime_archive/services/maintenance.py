from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from uptime_archive.core.exceptions import ConfigurationError
from uptime_archive.services.endpoints import read_json_file
from uptime_archive.storage.models import Reading, State


class MaintenanceStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class MaintenanceWindow(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    affected_services: frozenset[str] = Field(
        ..., validation_alias=AliasChoices("affected_services", "affectedServices", "systems")
    )
    start: datetime
    end: datetime
    title: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _ordered(self) -> MaintenanceWindow:
        if self.end < self.start:
            raise ValueError("maintenance window ends before it starts")
        return self

    def status(self, now: datetime) -> MaintenanceStatus:
        if now < self.start:
            return MaintenanceStatus.UPCOMING
        if now <= self.end:
            return MaintenanceStatus.IN_PROGRESS
        return MaintenanceStatus.COMPLETED

    def covers(self, service: str, moment: datetime) -> bool:
        return service in self.affected_services and self.start <= moment <= self.end


class MaintenanceGate:
    """Decides which services sit out a cycle and which readings stay out of the math."""

    def should_skip(self, service: str, now: datetime, windows: Iterable[MaintenanceWindow]) -> bool:
        return any(
            window.status(now) is MaintenanceStatus.IN_PROGRESS and service in window.affected_services
            for window in windows
        )

    def excludes(self, reading: Reading, windows: Sequence[MaintenanceWindow] = ()) -> bool:
        if reading.state is State.MAINTENANCE:
            return True
        if not windows:
            return False
        moment = reading.checked_at
        return any(window.covers(reading.service, moment) for window in windows)


_WINDOWS = TypeAdapter(list[MaintenanceWindow])


def load_maintenance(path: Path) -> list[MaintenanceWindow]:
    """Windows from ``maintenance.json``; a missing file means no maintenance."""
    if not path.exists():
        return []
    raw = read_json_file(path, "maintenance")
    if isinstance(raw, dict):
        raw = raw.get("maintenance", [])
    try:
        return _WINDOWS.validate_python(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid maintenance file {path}: {exc}") from exc
