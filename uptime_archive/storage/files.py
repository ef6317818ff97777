from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from uptime_archive.core.exceptions import ArchiveIOError
from uptime_archive.storage.models import DailySummaryFile, HotWindow

logger = logging.getLogger(__name__)

HOT_WINDOW_FILENAME = "current.json"
DAILY_SUMMARY_FILENAME = "daily-summary.json"


def write_json_atomic(path: Path, document: Any, *, indent: int | None = None) -> Path:
    """Write to a sibling temp file and rename it over ``path``.

    Readers see either the previous file or the new one, never a partial write.
    """
    separators = (",", ":") if indent is None else (",", ": ")
    payload = json.dumps(document, indent=indent, separators=separators, ensure_ascii=False) + "\n"
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise ArchiveIOError(f"failed to write {path}: {exc}", path) from exc
    return path


def _load_document(path: Path) -> dict[str, Any] | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise ArchiveIOError(f"failed to read {path}: {exc}", path) from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("ignoring unparseable file", extra={"path": str(path), "error": str(exc)})
        return None
    if not isinstance(document, dict):
        logger.warning("ignoring unexpected document", extra={"path": str(path)})
        return None
    return document


def load_hot_window(path: Path) -> HotWindow | None:
    document = _load_document(path)
    if document is None:
        return None
    try:
        return HotWindow.from_document(document)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("ignoring malformed hot window", extra={"path": str(path), "error": str(exc)})
        return None


def load_daily_summary(path: Path) -> DailySummaryFile | None:
    document = _load_document(path)
    if document is None:
        return None
    try:
        return DailySummaryFile.from_document(document)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("ignoring malformed daily summary", extra={"path": str(path), "error": str(exc)})
        return None
