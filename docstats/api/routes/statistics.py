"""
Statistics API Routes
Reporting endpoints for internal services and read endpoints for clients
"""

from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docstats.api.middleware.auth import require_service_token
from docstats.config import Settings, get_settings
from docstats.repositories import StatisticsRepository
from docstats.schemas import (
    CleanupResponse,
    DeleteResponse,
    GlobalStatisticsResponse,
    HealthResponse,
    PartialStatisticsUpdate,
    SearchCriteria,
    StatisticsResponse,
    SummaryView,
    UpdateStatisticsRequest,
)
from docstats.services import StatisticsCache, StatisticsService
from docstats.utils import CacheService, get_db

router = APIRouter()


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_statistics_cache(settings: Settings = Depends(get_settings)) -> StatisticsCache:
    return StatisticsCache(CacheService(settings.CACHE_KEY_PREFIX), settings)


def get_statistics_service(
    db: AsyncSession = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
    settings: Settings = Depends(get_settings),
) -> StatisticsService:
    repository = StatisticsRepository(db, max_retries=settings.STATISTICS_UPSERT_MAX_RETRIES)
    return StatisticsService(repository, cache, settings)


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# ============================================================================
# PROJECT ENDPOINTS
# ============================================================================

@router.put("/projects/{project_id}", response_model=StatisticsResponse)
async def update_statistics(
    project_id: UUID,
    request: UpdateStatisticsRequest,
    service: StatisticsService = Depends(get_statistics_service),
    _: str = Depends(require_service_token),
):
    """
    Merge a statistics report from an internal service.

    Derived values (totals, breakdown, bottlenecks, ratios) are recomputed.
    """
    return await service.update_statistics(project_id, request)


@router.get("/projects/batch", response_model=Dict[str, StatisticsResponse])
async def get_multiple_statistics(
    project_ids: str = Query(..., description="Comma-separated project UUIDs"),
    service: StatisticsService = Depends(get_statistics_service),
    settings: Settings = Depends(get_settings),
):
    """
    Statistics for several projects.
    Projects without statistics are absent from the result.
    """
    raw_ids = _split_csv(project_ids)
    if not raw_ids:
        raise HTTPException(status_code=400, detail="At least one project ID is required")
    if len(raw_ids) > settings.BATCH_MAX_PROJECTS:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.BATCH_MAX_PROJECTS} projects can be requested at once",
        )

    try:
        ids = [UUID(raw_id) for raw_id in raw_ids]
    except ValueError:
        raise HTTPException(status_code=422, detail="Project IDs must be valid UUIDs")

    return await service.get_multiple_statistics(ids)


@router.patch("/projects/{project_id}", response_model=StatisticsResponse)
async def partial_update_statistics(
    project_id: UUID,
    request: PartialStatisticsUpdate,
    service: StatisticsService = Depends(get_statistics_service),
    _: str = Depends(require_service_token),
):
    """
    Replace whole statistics blocks as sent.
    Stored derived values are not recomputed on this path.
    """
    statistics = await service.partial_update_statistics(project_id, request)
    if statistics is None:
        raise HTTPException(status_code=404, detail="Statistics not found")
    return statistics


@router.get("/projects/{project_id}", response_model=StatisticsResponse)
async def get_statistics(
    project_id: UUID,
    service: StatisticsService = Depends(get_statistics_service),
):
    statistics = await service.get_statistics(project_id)
    if statistics is None:
        raise HTTPException(status_code=404, detail="Statistics not found")
    return statistics


@router.get("/projects/{project_id}/summary", response_model=SummaryView)
async def get_statistics_summary(
    project_id: UUID,
    service: StatisticsService = Depends(get_statistics_service),
):
    summary = await service.get_summary(project_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Statistics not found")
    return summary


@router.delete("/projects/{project_id}", response_model=DeleteResponse)
async def delete_statistics(
    project_id: UUID,
    service: StatisticsService = Depends(get_statistics_service),
    _: str = Depends(require_service_token),
):
    deleted = await service.delete_statistics(project_id)
    return DeleteResponse(project_id=str(project_id), deleted=deleted)


# ============================================================================
# AGGREGATE ENDPOINTS
# ============================================================================

@router.get("/search", response_model=List[StatisticsResponse])
async def search_statistics(
    min_total_cost: Optional[float] = Query(None, ge=0, allow_inf_nan=False),
    max_total_cost: Optional[float] = Query(None, ge=0, allow_inf_nan=False),
    min_documents: Optional[int] = Query(None, ge=0),
    max_performance_time: Optional[float] = Query(None, ge=0, allow_inf_nan=False),
    data_freshness_minutes: Optional[int] = Query(None, ge=0),
    sources: Optional[str] = Query(None, description="Comma-separated source services"),
    service: StatisticsService = Depends(get_statistics_service),
):
    """Projects matching every given criterion, most recently updated first"""
    criteria = SearchCriteria(
        min_total_cost=min_total_cost,
        max_total_cost=max_total_cost,
        min_documents=min_documents,
        max_performance_time=max_performance_time,
        data_freshness_minutes=data_freshness_minutes,
        sources=_split_csv(sources) or None,
    )
    return await service.search_statistics(criteria)


@router.get("/global", response_model=GlobalStatisticsResponse)
async def get_global_statistics(
    service: StatisticsService = Depends(get_statistics_service),
):
    return await service.get_global_statistics()


@router.put("/cleanup/{retention_days}", response_model=CleanupResponse)
async def cleanup_old_statistics(
    retention_days: int = Path(..., ge=1, le=365),
    service: StatisticsService = Depends(get_statistics_service),
    _: str = Depends(require_service_token),
):
    """Delete stale statistics of archived or deleted projects"""
    deleted_count = await service.cleanup_old_statistics(retention_days)
    return CleanupResponse(deleted_count=deleted_count, retention_days=retention_days)


@router.get("/health", response_model=HealthResponse)
async def statistics_health(
    service: StatisticsService = Depends(get_statistics_service),
):
    return await service.check_health()
