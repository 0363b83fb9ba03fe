# 🗄️ Service wiring and connection lifecycle
# One ServiceContainer per process, created in the app lifespan and closed on shutdown

import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient

from cityreport.core.config import Settings
from cityreport.services.aggregation_service import ReportAggregationEngine
from cityreport.services.image_service import ImagePipeline
from cityreport.services.lifecycle_service import ExpirySweeper, LifecycleScheduler
from cityreport.services.media_store import GridFSMediaStore, MediaStore
from cityreport.services.preference_service import (
    JsonFilePreferenceStore,
    PreferenceStore,
    RedisPreferenceStore,
)
from cityreport.services.report_store import MongoReportStore, ReportStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    report_store: ReportStore
    media_store: MediaStore
    preferences: PreferenceStore
    engine: ReportAggregationEngine
    pipeline: ImagePipeline
    scheduler: LifecycleScheduler
    sweeper: ExpirySweeper
    mongo_client: Optional[AsyncIOMotorClient] = None

    async def close(self) -> None:
        await self.preferences.close()
        if self.mongo_client is not None:
            self.mongo_client.close()
            logger.info("🔒 MongoDB connection closed")


async def log_expired_reports(report_ids: List[str]) -> None:
    """Default follow-up for swept reports: surface them for archival."""
    logger.info(f"📦 {len(report_ids)} completed reports ready for archival: {', '.join(report_ids[:10])}")


def build_preferences(settings: Settings) -> PreferenceStore:
    if settings.preferences_backend == "redis":
        if settings.redis_url:
            return RedisPreferenceStore.from_url(settings.redis_url)
        logger.warning("⚠️ PREFERENCES_BACKEND=redis but REDIS_URL missing. Using file store.")
    return JsonFilePreferenceStore(settings.preferences_path)


def build_services(
    settings: Settings,
    report_store: Optional[ReportStore] = None,
    media_store: Optional[MediaStore] = None,
    preferences: Optional[PreferenceStore] = None,
) -> ServiceContainer:
    """Wire every component from one Settings object.

    Stores not supplied are created against MongoDB (motor connects lazily).
    """
    mongo_client = None
    if report_store is None or media_store is None:
        mongo_client = AsyncIOMotorClient(
            settings.mongo_uri,
            maxPoolSize=20,
            minPoolSize=2,
            serverSelectionTimeoutMS=5000,
        )
        db = mongo_client[settings.db_name]
        report_store = report_store or MongoReportStore(
            db, settings.reports_collection, settings.report_fetch_limit
        )
        media_store = media_store or GridFSMediaStore(db, settings.photos_bucket)

    preferences = preferences or build_preferences(settings)
    engine = ReportAggregationEngine(settings.popular_window, settings.urgent_severity)
    pipeline = ImagePipeline(
        max_width=settings.image_max_width,
        max_height=settings.image_max_height,
        quality=settings.image_quality,
        profile_size=settings.profile_max_size,
        profile_quality=settings.profile_quality,
    )
    return ServiceContainer(
        settings=settings,
        report_store=report_store,
        media_store=media_store,
        preferences=preferences,
        engine=engine,
        pipeline=pipeline,
        scheduler=LifecycleScheduler(preferences, settings.sweep_interval),
        sweeper=ExpirySweeper(report_store, engine, settings.expiry_after, log_expired_reports),
        mongo_client=mongo_client,
    )


# Dependency functions for FastAPI
def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
