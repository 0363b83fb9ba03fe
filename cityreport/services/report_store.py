import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from cityreport.core.errors import InvalidStatusTransition, StoreUnavailable
from cityreport.models.report_model import Report, ReportStatus
from cityreport.utils.helpers import utc_now
from cityreport.utils.validators import validate_report_documents

logger = logging.getLogger(__name__)

STATUS_CHANGE_ATTEMPTS = 3


def _id_filter(report_id: str) -> Dict[str, Any]:
    """Match string ids and ObjectId ids stored by older clients."""
    if ObjectId.is_valid(report_id):
        return {"_id": {"$in": [report_id, ObjectId(report_id)]}}
    return {"_id": report_id}


class ReportStore(ABC):
    """Source of report snapshots; the only place reports are written."""

    @abstractmethod
    async def fetch_all(self) -> List[Report]: ...

    @abstractmethod
    async def fetch_for_user(self, user_id: str) -> List[Report]: ...

    @abstractmethod
    async def apply_status_change(self, report_id: str, new_status: ReportStatus) -> bool: ...


class MongoReportStore(ReportStore):
    """ReportStore over a MongoDB ``reports`` collection (motor).

    Reads return newest first and are capped at ``fetch_limit`` documents.
    Malformed documents are skipped at this boundary.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "reports", fetch_limit: int = 100):
        self.collection = db[collection_name]
        self.fetch_limit = fetch_limit

    async def fetch_all(self) -> List[Report]:
        return await self._find({}, "fetch all reports")

    async def fetch_for_user(self, user_id: str) -> List[Report]:
        return await self._find({"userId": user_id}, f"fetch reports for user {user_id}")

    async def apply_status_change(self, report_id: str, new_status: ReportStatus) -> bool:
        """Persist a forward status move; returns False when the report does not exist.

        The write only matches while the stored status is still the one that was
        checked. When a concurrent change lands in between, the report is re-read
        and the transition checked again against the new status.
        """
        try:
            for _ in range(STATUS_CHANGE_ATTEMPTS):
                document = await self.collection.find_one(_id_filter(report_id), {"status": 1})
                if document is None:
                    logger.warning(f"⚠️ Status change for unknown report {report_id}")
                    return False

                stored_status = document.get("status")
                current = ReportStatus.from_string(stored_status)
                if not current.can_transition_to(new_status):
                    raise InvalidStatusTransition(report_id, current.value, new_status.value)

                result = await self.collection.update_one(
                    {**_id_filter(report_id), "status": stored_status},
                    {"$set": {"status": new_status.value, "updatedAt": utc_now()}},
                )
                if result.matched_count > 0:
                    logger.info(f"✅ Report {report_id}: {current.value} -> {new_status.value}")
                    return True
                logger.warning(f"⚠️ Report {report_id} changed while updating status, re-checking")
        except PyMongoError as e:
            logger.error(f"❌ Failed to update report {report_id}: {e}")
            raise StoreUnavailable(f"update status of report {report_id}", e) from e

        raise StoreUnavailable(f"update status of report {report_id} (concurrent updates)")

    async def _find(self, query: Dict[str, Any], operation: str) -> List[Report]:
        try:
            cursor = self.collection.find(query).sort("createdAt", -1).limit(self.fetch_limit)
            documents = await cursor.to_list(length=self.fetch_limit)
        except PyMongoError as e:
            logger.error(f"❌ Failed to {operation}: {e}")
            raise StoreUnavailable(operation, e) from e

        reports = validate_report_documents(documents)
        logger.debug(f"Loaded {len(reports)}/{len(documents)} reports ({operation})")
        return reports


class InMemoryReportStore(ReportStore):
    """ReportStore over a plain list, used by offline tooling and tests."""

    def __init__(self, reports: Optional[List[Report]] = None):
        self._reports: Dict[str, Report] = {r.id: r for r in reports or []}

    async def fetch_all(self) -> List[Report]:
        return sorted(self._reports.values(), key=lambda r: r.createdAt, reverse=True)

    async def fetch_for_user(self, user_id: str) -> List[Report]:
        return [r for r in await self.fetch_all() if r.userId == user_id]

    async def apply_status_change(
        self, report_id: str, new_status: ReportStatus, now: Optional[datetime] = None
    ) -> bool:
        report = self._reports.get(report_id)
        if report is None:
            return False
        if not report.status.can_transition_to(new_status):
            raise InvalidStatusTransition(report_id, report.status.value, new_status.value)
        # Reports are immutable; the store swaps in an updated copy
        self._reports[report_id] = report.model_copy(
            update={"status": new_status, "updatedAt": now or utc_now()}
        )
        return True
