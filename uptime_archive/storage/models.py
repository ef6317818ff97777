from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable

HOT_WINDOW_VERSION = 1
DAILY_SUMMARY_VERSION = 1


class State(str, enum.Enum):
    UP = "up"
    DOWN = "down"
    DEGRADED = "degraded"
    MAINTENANCE = "maintenance"


class ReadingFormatError(ValueError):
    """An archive line could not be turned into a Reading."""


@dataclass(frozen=True)
class Reading:
    timestamp: int
    service: str
    state: State
    code: int | None = None
    latency_ms: int | None = None
    error: str | None = None

    @property
    def checked_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    @property
    def day(self) -> date:
        return self.checked_at.date()

    def to_record(self) -> dict[str, Any]:
        """Compact archive form; null fields are left out."""
        record: dict[str, Any] = {"t": self.timestamp, "svc": self.service, "state": self.state.value}
        if self.code is not None:
            record["code"] = self.code
        if self.latency_ms is not None:
            record["lat"] = self.latency_ms
        if self.error is not None:
            record["err"] = self.error
        return record

    @classmethod
    def from_record(cls, record: Any) -> Reading:
        if not isinstance(record, dict):
            raise ReadingFormatError(f"expected an object, got {type(record).__name__}")
        try:
            timestamp = record["t"]
            service = record["svc"]
            state = State(record["state"])
        except KeyError as exc:
            raise ReadingFormatError(f"missing field {exc.args[0]!r}") from exc
        except ValueError as exc:
            raise ReadingFormatError(str(exc)) from exc
        if not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise ReadingFormatError(f"bad timestamp {timestamp!r}")
        try:
            datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as exc:
            raise ReadingFormatError(f"timestamp out of range {timestamp!r}") from exc
        if not isinstance(service, str) or not service:
            raise ReadingFormatError(f"bad service {service!r}")
        return cls(
            timestamp=timestamp,
            service=service,
            state=state,
            code=_optional_int(record.get("code")),
            latency_ms=_optional_int(record.get("lat")),
            error=record.get("err"),
        )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ReadingFormatError(f"bad numeric field {value!r}")
    return int(value)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO timestamp, got {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class HotWindow:
    generated: datetime
    readings: tuple[Reading, ...] = ()
    version: int = HOT_WINDOW_VERSION

    def by_service(self) -> dict[str, list[Reading]]:
        grouped: dict[str, list[Reading]] = {}
        for reading in self.readings:
            grouped.setdefault(reading.service, []).append(reading)
        return grouped

    def latest_states(self) -> dict[str, State]:
        latest: dict[str, Reading] = {}
        for reading in self.readings:
            current = latest.get(reading.service)
            if current is None or reading.timestamp >= current.timestamp:
                latest[reading.service] = reading
        return {service: reading.state for service, reading in latest.items()}

    def to_document(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "generated": format_timestamp(self.generated),
            "readings": [reading.to_record() for reading in self.readings],
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> HotWindow:
        readings = document.get("readings", [])
        if not isinstance(readings, list):
            raise ValueError("readings must be a list")
        return cls(
            generated=parse_timestamp(document["generated"]),
            readings=tuple(Reading.from_record(item) for item in readings),
            version=int(document.get("version", HOT_WINDOW_VERSION)),
        )


@dataclass(frozen=True)
class DailySummaryEntry:
    date: date
    service: str
    uptime_pct: float | None
    avg_latency_ms: int | None
    p95_latency_ms: int | None
    checks_total: int
    checks_passed: int
    incident_count: int

    def to_record(self) -> dict[str, Any]:
        # service is implied by the enclosing map key
        return {
            "date": self.date.isoformat(),
            "uptimePct": self.uptime_pct,
            "avgLatencyMs": self.avg_latency_ms,
            "p95LatencyMs": self.p95_latency_ms,
            "checksTotal": self.checks_total,
            "checksPassed": self.checks_passed,
            "incidentCount": self.incident_count,
        }

    @classmethod
    def from_record(cls, service: str, record: dict[str, Any]) -> DailySummaryEntry:
        if not isinstance(record, dict):
            raise ValueError(f"summary entry for {service!r} is not an object")
        return cls(
            date=date.fromisoformat(record["date"]),
            service=service,
            uptime_pct=record.get("uptimePct"),
            avg_latency_ms=record.get("avgLatencyMs"),
            p95_latency_ms=record.get("p95LatencyMs"),
            checks_total=int(record.get("checksTotal", 0)),
            checks_passed=int(record.get("checksPassed", 0)),
            incident_count=int(record.get("incidentCount", 0)),
        )


@dataclass(frozen=True)
class DailySummaryFile:
    last_updated: datetime
    window_days: int
    services: dict[str, list[DailySummaryEntry]] = field(default_factory=dict)
    version: int = DAILY_SUMMARY_VERSION

    def entries_for(self, day: date) -> list[DailySummaryEntry]:
        return [entry for entries in self.services.values() for entry in entries if entry.date == day]

    def to_document(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": format_timestamp(self.last_updated),
            "windowDays": self.window_days,
            "services": {
                name: [entry.to_record() for entry in entries]
                for name, entries in self.services.items()
            },
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> DailySummaryFile:
        raw_services = document.get("services", {})
        if not isinstance(raw_services, dict) or not all(isinstance(items, list) for items in raw_services.values()):
            raise ValueError("services must map names to lists of entries")
        services = {
            name: [DailySummaryEntry.from_record(name, item) for item in items]
            for name, items in raw_services.items()
        }
        return cls(
            last_updated=parse_timestamp(document["lastUpdated"]),
            window_days=int(document["windowDays"]),
            services=services,
            version=int(document.get("version", DAILY_SUMMARY_VERSION)),
        )


def sort_readings(readings: Iterable[Reading]) -> tuple[Reading, ...]:
    """Group by service, then timestamp; ties keep archive order."""
    return tuple(sorted(readings, key=lambda reading: (reading.service, reading.timestamp)))
