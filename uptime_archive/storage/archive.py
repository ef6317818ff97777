from __future__ import annotations

import gzip
import json
import logging
import re
import zlib
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Iterator

from uptime_archive.core.exceptions import ArchiveClosedError, ArchiveIOError
from uptime_archive.storage.models import Reading, ReadingFormatError

logger = logging.getLogger(__name__)

ARCHIVES_DIRNAME = "archives"
RAW_SUFFIX = ".jsonl"
COMPRESSED_SUFFIX = ".jsonl.gz"

_ARCHIVE_NAME = re.compile(r"^history-(\d{4}-\d{2}-\d{2})\.jsonl(\.gz)?$")


def archive_path(archives_dir: Path, day: date, compressed: bool = False) -> Path:
    stamp = day.isoformat()
    suffix = COMPRESSED_SUFFIX if compressed else RAW_SUFFIX
    return archives_dir / f"{day.year:04d}" / f"{day.month:02d}" / f"history-{stamp}{suffix}"


def archive_day(path: Path) -> date | None:
    """Calendar day encoded in an archive file name, or None for foreign files."""
    match = _ARCHIVE_NAME.match(path.name)
    if match is None:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class ArchiveWriter:
    def __init__(self, archives_dir: Path) -> None:
        self.archives_dir = archives_dir

    def append(self, reading: Reading) -> Path:
        day = reading.day
        path = archive_path(self.archives_dir, day)
        if archive_path(self.archives_dir, day, compressed=True).exists():
            raise ArchiveClosedError(f"archive for {day.isoformat()} is already compressed", path)

        line = json.dumps(reading.to_record(), separators=(",", ":"), ensure_ascii=False) + "\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line)
                handle.flush()
        except OSError as exc:
            raise ArchiveIOError(f"failed to append to {path}: {exc}", path) from exc
        logger.debug("reading appended", extra={"path": str(path), "service": reading.service})
        return path


@dataclass(frozen=True)
class ArchiveDay:
    day: date
    path: Path
    compressed: bool


class ArchiveReader:
    """Read-side view of the archive tree, shared by the compactors and the aggregator."""

    def __init__(self, archives_dir: Path) -> None:
        self.archives_dir = archives_dir

    def locate(self, day: date) -> ArchiveDay | None:
        # A raw file wins when both exist: it is what the compressed twin was made from.
        raw = archive_path(self.archives_dir, day)
        if raw.exists():
            return ArchiveDay(day, raw, compressed=False)
        compressed = archive_path(self.archives_dir, day, compressed=True)
        if compressed.exists():
            return ArchiveDay(day, compressed, compressed=True)
        return None

    def raw_files(self) -> list[Path]:
        if not self.archives_dir.exists():
            return []
        return sorted(
            path
            for path in self.archives_dir.glob(f"*/*/history-*{RAW_SUFFIX}")
            if archive_day(path) is not None
        )

    def read_day(self, day: date) -> list[Reading]:
        located = self.locate(day)
        if located is None:
            return []
        return list(self._read(located))

    def read_range(self, start: date, end: date) -> Iterator[Reading]:
        for day in iter_days(start, end):
            located = self.locate(day)
            if located is not None:
                yield from self._read(located)

    def _read(self, located: ArchiveDay) -> Iterator[Reading]:
        for number, line in enumerate(self._lines(located), start=1):
            if not line.strip():
                continue
            try:
                yield Reading.from_record(json.loads(line))
            except (json.JSONDecodeError, ReadingFormatError) as exc:
                logger.warning(
                    "skipping corrupt archive line",
                    extra={"path": str(located.path), "line": number, "error": str(exc)},
                )

    def _lines(self, located: ArchiveDay) -> Iterator[str]:
        try:
            if not located.compressed:
                with located.path.open("r", encoding="utf-8", errors="replace") as handle:
                    yield from handle
                return
            with gzip.open(located.path, "rt", encoding="utf-8", errors="replace") as handle:
                try:
                    yield from handle
                except (gzip.BadGzipFile, EOFError, zlib.error) as exc:
                    # keep whatever decoded before the damage
                    logger.warning(
                        "truncated or corrupt compressed archive",
                        extra={"path": str(located.path), "error": str(exc)},
                    )
        except gzip.BadGzipFile as exc:
            logger.warning(
                "unreadable compressed archive", extra={"path": str(located.path), "error": str(exc)}
            )
        except OSError as exc:
            raise ArchiveIOError(f"failed to read {located.path}: {exc}", located.path) from exc
