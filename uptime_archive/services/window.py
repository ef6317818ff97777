from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path

from uptime_archive.storage.archive import ArchiveReader
from uptime_archive.storage.files import write_json_atomic
from uptime_archive.storage.models import HotWindow, sort_readings, to_epoch_ms

logger = logging.getLogger(__name__)


class WindowCompactor:
    def __init__(self, archives: ArchiveReader, output_path: Path) -> None:
        self.archives = archives
        self.output_path = output_path

    def collect(self, window_days: int, now: datetime) -> HotWindow:
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        window_start = now - timedelta(days=window_days)
        lower, upper = to_epoch_ms(window_start), to_epoch_ms(now)

        readings = [
            reading
            for reading in self.archives.read_range(window_start.date(), now.date())
            if lower <= reading.timestamp <= upper
        ]
        return HotWindow(generated=now, readings=sort_readings(readings))

    def rebuild(self, window_days: int, now: datetime) -> HotWindow:
        hot = self.collect(window_days, now)
        write_json_atomic(self.output_path, hot.to_document())
        logger.info(
            "hot window rebuilt",
            extra={"path": str(self.output_path), "readings": len(hot.readings), "window_days": window_days},
        )
        return hot
