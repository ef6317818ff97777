from __future__ import annotations

from fastapi import APIRouter, Depends

from uptime_archive.api.dependencies import get_status_service
from uptime_archive.services.status_history import StatusHistoryService

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(service: StatusHistoryService = Depends(get_status_service)) -> dict:
    return {"status": "ok", "data_dir_present": service.output_dir.is_dir()}
