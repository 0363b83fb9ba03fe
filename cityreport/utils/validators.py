import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from cityreport.core.errors import ReportValidationError
from cityreport.models.report_model import Report

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "userId", "createdAt", "updatedAt")


def validate_report_document(document: Dict[str, Any]) -> Report:
    """Turn a raw store record into a Report or raise ReportValidationError.

    Accepts the MongoDB ``_id`` key in place of ``id``.
    """
    data = dict(document)
    if "id" not in data and "_id" in data:
        data["id"] = str(data.pop("_id"))
    else:
        data.pop("_id", None)

    report_id = str(data.get("id")) if data.get("id") is not None else None
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
    if missing:
        raise ReportValidationError(f"missing required fields: {', '.join(missing)}", report_id)

    try:
        return Report.model_validate(data)
    except ValidationError as e:
        raise ReportValidationError(f"invalid report record: {e}", report_id) from e


def validate_report_documents(documents: Iterable[Dict[str, Any]]) -> List[Report]:
    """Validate a batch, skipping malformed records with a warning."""
    reports: List[Report] = []
    for document in documents:
        try:
            reports.append(validate_report_document(document))
        except ReportValidationError as e:
            logger.warning(f"⚠️ Skipping malformed report {e.report_id or '<unknown>'}: {e}")
    return reports
