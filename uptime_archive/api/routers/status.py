from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from uptime_archive.api.dependencies import get_status_service
from uptime_archive.api.schemas.status import (
    DailySummaryEntryRead,
    DailySummaryRead,
    HotWindowRead,
    ServiceStatusRead,
)
from uptime_archive.services.status_history import StatusHistoryService

router = APIRouter(prefix="/status", tags=["status"])


@router.get("/current", response_model=HotWindowRead)
async def get_current(service: StatusHistoryService = Depends(get_status_service)) -> HotWindowRead:
    hot = service.hot_window()
    if hot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hot window not generated yet")
    return HotWindowRead.model_validate(hot.to_document())


@router.get("/summary", response_model=DailySummaryRead)
async def get_summary(service: StatusHistoryService = Depends(get_status_service)) -> DailySummaryRead:
    summary = service.daily_summary()
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Daily summary not generated yet")
    return DailySummaryRead.model_validate(summary.to_document())


@router.get("/services", response_model=list[ServiceStatusRead])
async def list_services(service: StatusHistoryService = Depends(get_status_service)) -> list[ServiceStatusRead]:
    return [ServiceStatusRead.model_validate(item) for item in service.services()]


@router.get("/services/{name}/daily", response_model=list[DailySummaryEntryRead])
async def get_service_daily(
    name: str,
    service: StatusHistoryService = Depends(get_status_service),
) -> list[DailySummaryEntryRead]:
    entries = service.daily(name)
    if entries is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service not found")
    return [DailySummaryEntryRead.model_validate(entry.to_record()) for entry in entries]
