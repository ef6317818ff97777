from __future__ import annotations

from uptime_archive.core.config import get_settings
from uptime_archive.services.status_history import StatusHistoryService


def get_status_service() -> StatusHistoryService:
    return StatusHistoryService(get_settings().output_dir)
