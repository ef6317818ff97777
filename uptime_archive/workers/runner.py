from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from pydantic import ValidationError

from uptime_archive.core.config import Settings
from uptime_archive.core.exceptions import (
    ArchiveClosedError,
    ArchiveIOError,
    ConfigurationError,
    StoreConflictError,
    StoreError,
)
from uptime_archive.services.checker import Prober
from uptime_archive.services.compaction import ArchiveCompactor
from uptime_archive.services.endpoints import EndpointSpec, load_endpoints
from uptime_archive.services.maintenance import MaintenanceGate, MaintenanceWindow, load_maintenance
from uptime_archive.services.store import GitStore, LocalStore, Store
from uptime_archive.services.summary import SummaryAggregator
from uptime_archive.services.window import WindowCompactor
from uptime_archive.storage.archive import ARCHIVES_DIRNAME, ArchiveReader, ArchiveWriter
from uptime_archive.storage.files import DAILY_SUMMARY_FILENAME, HOT_WINDOW_FILENAME, load_hot_window
from uptime_archive.storage.models import HotWindow, Reading, State

logger = logging.getLogger(__name__)

SKIPPED = "skipped"


@dataclass(frozen=True)
class Transition:
    service: str
    previous: State | None
    current: State


@dataclass
class CycleReport:
    started_at: datetime
    outcomes: dict[str, str] = field(default_factory=dict)
    readings: list[Reading] = field(default_factory=list)
    dropped: list[Reading] = field(default_factory=list)
    transitions: list[Transition] = field(default_factory=list)
    committed: bool = False
    attempts: int = 0
    error: str | None = None

    @property
    def skipped(self) -> list[str]:
        return [service for service, outcome in self.outcomes.items() if outcome == SKIPPED]

    @property
    def failed(self) -> bool:
        return self.error is not None


class WriteCoordinator:
    """One cycle, one writer: probe everything, then commit once, retrying on conflict."""

    def __init__(
        self,
        config: Settings,
        store: Store | None = None,
        prober: Prober | None = None,
        gate: MaintenanceGate | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep_func: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._config = config
        self._root = config.output_dir
        self._store = store or build_store(config)
        self._prober = prober or Prober(user_agent=config.user_agent)
        self._gate = gate or MaintenanceGate()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep_func or asyncio.sleep

        archives_dir = self._root / ARCHIVES_DIRNAME
        self._archives = ArchiveReader(archives_dir)
        self._writer = ArchiveWriter(archives_dir)
        self._window = WindowCompactor(self._archives, self._root / HOT_WINDOW_FILENAME)
        self._summary = SummaryAggregator(self._archives, self._root / DAILY_SUMMARY_FILENAME, self._gate)

    @property
    def hot_window_path(self) -> Path:
        return self._window.output_path

    @property
    def summary_path(self) -> Path:
        return self._summary.output_path

    async def run_cycle(
        self, specs: Sequence[EndpointSpec], windows: Sequence[MaintenanceWindow] = ()
    ) -> CycleReport:
        report = CycleReport(started_at=self._clock())
        logger.info("cycle started", extra={"services": len(specs)})

        # nothing touches the store until every probe has finished
        for spec in specs:
            now = self._clock()
            if self._gate.should_skip(spec.name, now, windows):
                report.outcomes[spec.name] = SKIPPED
                logger.info("service in maintenance, skipping", extra={"service": spec.name})
                continue
            reading = await self._prober.probe(spec, now)
            report.readings.append(reading)
            report.outcomes[spec.name] = reading.state.value

        async def apply() -> list[Path]:
            previous = self._previous_states()
            touched = self._append(report)
            now = self._clock()
            hot = self._window.rebuild(self._config.hot_window_days, now)
            self._summary.regenerate(self._config.summary_window_days, now, hot, windows)
            report.transitions = _transitions(previous, report.readings)
            return sorted(touched) + [self.hot_window_path, self.summary_path]

        await self._commit_with_retry(report, apply, _commit_message(report))
        _log_summary(report)
        return report

    async def run_compaction(self) -> CycleReport:
        report = CycleReport(started_at=self._clock())
        compactor = ArchiveCompactor(self._archives)

        async def apply() -> list[Path]:
            compressed = compactor.compress_closed_archives(self._clock())
            report.outcomes = {path.name: "compressed" for path in compressed}
            return [self._archives.archives_dir] if compressed else []

        await self._commit_with_retry(report, apply, "Compress closed archives")
        return report

    async def bootstrap_summary(self, windows: Sequence[MaintenanceWindow] = ()) -> CycleReport:
        """Recompute every summary day from the archives, ignoring the existing file."""
        report = CycleReport(started_at=self._clock())

        async def apply() -> list[Path]:
            now = self._clock()
            hot = self._window.rebuild(self._config.hot_window_days, now)
            summary = self._summary.regenerate(
                self._config.summary_window_days, now, hot, windows, reuse_existing=False
            )
            report.outcomes = {name: f"{len(entries)} days" for name, entries in summary.services.items()}
            return [self.hot_window_path, self.summary_path]

        await self._commit_with_retry(report, apply, "Rebuild daily summary")
        return report

    async def _commit_with_retry(
        self,
        report: CycleReport,
        apply: Callable[[], Awaitable[list[Path]]],
        message: str,
    ) -> None:
        attempts = self._config.commit_max_attempts
        for attempt in range(attempts):
            report.attempts = attempt + 1
            await self._store.sync()
            paths = await apply()
            try:
                report.committed = await self._store.commit(paths, message)
                report.error = None
                return
            except StoreConflictError as exc:
                report.error = str(exc)
                if attempt < attempts - 1:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "store conflict, retrying",
                        extra={"attempt": attempt + 1, "delay_sec": delay},
                    )
                    await self._sleep(delay)
                    continue
        logger.error("commit retries exhausted, cycle failed", extra={"attempts": attempts})

    def _append(self, report: CycleReport) -> set[Path]:
        touched: set[Path] = set()
        report.dropped = []
        for reading in report.readings:
            try:
                touched.add(self._writer.append(reading))
            except ArchiveClosedError:
                # stamped before midnight, but the day was compressed while we retried
                report.dropped.append(reading)
                logger.warning(
                    "dropping reading for compressed day",
                    extra={"service": reading.service, "day": reading.day.isoformat()},
                )
        return touched

    def _backoff(self, attempt: int) -> float:
        base = self._config.commit_backoff_base_sec
        return min(base * (2**attempt), self._config.commit_backoff_cap_sec)

    def _previous_states(self) -> dict[str, State]:
        hot = load_hot_window(self.hot_window_path)
        return hot.latest_states() if hot is not None else {}


def build_store(config: Settings) -> Store:
    if config.store_backend == "git":
        return GitStore(
            config.output_dir,
            remote=config.git_remote,
            branch=config.git_branch,
            author_name=config.git_author_name,
            author_email=config.git_author_email,
        )
    return LocalStore(config.output_dir)


def _transitions(previous: dict[str, State], readings: Sequence[Reading]) -> list[Transition]:
    changes: list[Transition] = []
    for reading in readings:
        before = previous.get(reading.service)
        if before is not reading.state:
            changes.append(Transition(reading.service, before, reading.state))
    return changes


def _commit_message(report: CycleReport) -> str:
    down = sorted(service for service, outcome in report.outcomes.items() if outcome == State.DOWN.value)
    counts = f"{len(report.readings)} reading(s)"
    if down:
        return f"Status update: {counts}, down: {', '.join(down)}"
    return f"Status update: {counts}"


def _log_summary(report: CycleReport) -> None:
    for service, outcome in report.outcomes.items():
        logger.info("service checked", extra={"service": service, "outcome": outcome})
    for change in report.transitions:
        logger.info(
            "service state changed",
            extra={
                "service": change.service,
                "previous": change.previous.value if change.previous else None,
                "current": change.current.value,
            },
        )
    if report.failed:
        logger.error("cycle failed", extra={"error": report.error, "attempts": report.attempts})


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uptime-archive", description="Monitoring data store pipeline")
    parser.add_argument("command", choices=("run", "compress", "bootstrap-summary"))
    parser.add_argument("--output-dir", type=Path, help="status data directory (store root)")
    parser.add_argument("--config", type=Path, help="endpoint config JSON ({'systems': [...]})")
    parser.add_argument("--maintenance", type=Path, help="maintenance windows JSON")
    parser.add_argument("--hot-days", type=int, help="days kept in the hot window file")
    parser.add_argument("--summary-days", type=int, help="days kept in the daily summary")
    parser.add_argument("--store", choices=("local", "git"), help="store backend")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "output_dir": args.output_dir,
        "endpoints_file": args.config,
        "maintenance_file": args.maintenance,
        "hot_window_days": args.hot_days,
        "summary_window_days": args.summary_days,
        "store_backend": args.store,
    }
    try:
        return Settings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc}") from exc


async def _run(command: str, config: Settings) -> CycleReport:
    coordinator = WriteCoordinator(config)
    if command == "compress":
        return await coordinator.run_compaction()

    windows = load_maintenance(config.maintenance_path)
    if command == "bootstrap-summary":
        return await coordinator.bootstrap_summary(windows)

    if config.endpoints_file is None:
        raise ConfigurationError("no endpoint config given (--config or UPTIME_ENDPOINTS_FILE)")
    specs = load_endpoints(config.endpoints_file)
    return await coordinator.run_cycle(specs, windows)


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        config = _load_settings(args)
        logging.basicConfig(level=logging.DEBUG if args.verbose else config.log_level)
        asyncio.run(_run(args.command, config))
    except ConfigurationError as exc:
        logger.error("configuration error: %s", exc)
        return 2
    except (ArchiveIOError, StoreError) as exc:
        logger.error("cycle aborted: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
