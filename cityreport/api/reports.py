# 📊 Report views and photo upload API
# Thin HTTP layer over the aggregation engine, image pipeline and stores

import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from cityreport.core.database import ServiceContainer, get_services
from cityreport.core.errors import DecodeError, ImagePipelineError, StoreUnavailable
from cityreport.models.load_state import load
from cityreport.models.report_model import CompressedImage, Report, UserStats
from cityreport.utils.helpers import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports"])


class ReportListResponse(BaseModel):
    count: int
    reports: List[Report]


class AnalyticsResponse(BaseModel):
    totalReports: int
    monthly: Dict[str, int]
    categories: Dict[str, int]
    averageResponseDays: float


class PhotoUploadResponse(BaseModel):
    photoId: str
    width: int
    height: int
    sizeBytes: int


async def _snapshot(services: ServiceContainer, user_id: Optional[str] = None) -> List[Report]:
    store = services.report_store
    state = await load(store.fetch_for_user(user_id) if user_id else store.fetch_all())
    if state.is_failure:
        detail = str(state.error) if isinstance(state.error, StoreUnavailable) else "Report store unavailable"
        raise HTTPException(status_code=503, detail=detail)
    return state.value


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status: str = Query("all", description="Status value, 'all' or 'urgent'"),
    min_severity: Optional[int] = Query(None, ge=1, le=5),
    newest_first: bool = True,
    user_id: Optional[str] = None,
    services: ServiceContainer = Depends(get_services),
):
    reports = await _snapshot(services, user_id)
    try:
        selected = services.engine.filter_and_sort(reports, status, min_severity, newest_first)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ReportListResponse(count=len(selected), reports=selected)


@router.get("/popular", response_model=ReportListResponse)
async def popular_reports(
    limit: Optional[int] = Query(None, ge=1, le=100),
    services: ServiceContainer = Depends(get_services),
):
    reports = await _snapshot(services)
    popular = services.engine.popular_this_week(
        reports, utc_now(), limit or services.settings.popular_limit
    )
    return ReportListResponse(count=len(popular), reports=popular)


@router.get("/urgent", response_model=ReportListResponse)
async def urgent_reports(services: ServiceContainer = Depends(get_services)):
    urgent = services.engine.urgent_reports(await _snapshot(services))
    return ReportListResponse(count=len(urgent), reports=urgent)


@router.get("/users/{user_id}/stats", response_model=UserStats)
async def user_stats(user_id: str, services: ServiceContainer = Depends(get_services)):
    reports = await _snapshot(services, user_id)
    return services.engine.stats_for_user(reports, user_id)


@router.get("/analytics", response_model=AnalyticsResponse)
async def analytics(services: ServiceContainer = Depends(get_services)):
    reports = await _snapshot(services)
    engine = services.engine
    return AnalyticsResponse(
        totalReports=len(reports),
        monthly=engine.monthly_counts(reports),
        categories={c.value: n for c, n in engine.category_distribution(reports).items()},
        averageResponseDays=round(engine.average_response_days(reports), 2),
    )


async def _upload(image: UploadFile, services: ServiceContainer, profile: bool) -> PhotoUploadResponse:
    if not image.content_type or not image.content_type.startswith("image/"):
        logger.error(f"Invalid image format: {image.content_type}")
        raise HTTPException(status_code=400, detail="Invalid image format")

    content = await image.read()
    pipeline = services.pipeline
    try:
        compress = pipeline.compress_profile_photo if profile else pipeline.compress
        compressed: CompressedImage = await asyncio.to_thread(compress, content)
    except DecodeError as e:
        logger.warning(f"⚠️ Rejected unreadable upload {image.filename}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ImagePipelineError as e:
        logger.error(f"❌ Compression failed for {image.filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    try:
        photo_id = await services.media_store.store(compressed)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return PhotoUploadResponse(
        photoId=photo_id,
        width=compressed.width,
        height=compressed.height,
        sizeBytes=compressed.byte_length,
    )


@router.post("/photos", response_model=PhotoUploadResponse)
async def upload_photo(
    image: UploadFile = File(...),
    services: ServiceContainer = Depends(get_services),
):
    return await _upload(image, services, profile=False)


@router.post("/photos/profile", response_model=PhotoUploadResponse)
async def upload_profile_photo(
    image: UploadFile = File(...),
    services: ServiceContainer = Depends(get_services),
):
    return await _upload(image, services, profile=True)
