from __future__ import annotations

import gzip
import logging
import os
from datetime import datetime
from pathlib import Path

from uptime_archive.core.exceptions import ArchiveIOError
from uptime_archive.storage.archive import COMPRESSED_SUFFIX, RAW_SUFFIX, ArchiveReader, archive_day

logger = logging.getLogger(__name__)


class ArchiveCompactor:
    def __init__(self, archives: ArchiveReader) -> None:
        self.archives = archives

    def compress_closed_archives(self, now: datetime) -> list[Path]:
        """Gzip every raw archive older than today (UTC); re-runs are no-ops."""
        today = now.date()
        compressed: list[Path] = []
        for raw_path in self.archives.raw_files():
            day = archive_day(raw_path)
            if day is None or day >= today:
                continue
            compressed.append(self._compress(raw_path))
        if compressed:
            logger.info("archives compressed", extra={"count": len(compressed)})
        return compressed

    def _compress(self, raw_path: Path) -> Path:
        target = raw_path.with_name(raw_path.name[: -len(RAW_SUFFIX)] + COMPRESSED_SUFFIX)
        tmp_path = target.with_name(f".{target.name}.tmp")
        try:
            raw = raw_path.read_bytes()
            # mtime=0 keeps the output identical across runs
            payload = gzip.compress(raw, mtime=0)
            with tmp_path.open("wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())

            written = tmp_path.read_bytes()
            if not written or gzip.decompress(written) != raw:
                raise ArchiveIOError(f"compressed copy of {raw_path} failed verification", raw_path)

            os.replace(tmp_path, target)
            raw_path.unlink()
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ArchiveIOError(f"failed to compress {raw_path}: {exc}", raw_path) from exc
        except ArchiveIOError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("archive compressed", extra={"raw": str(raw_path), "compressed": str(target)})
        return target
