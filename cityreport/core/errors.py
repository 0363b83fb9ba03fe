# 🧯 Error taxonomy for the City Report core
# Raised by services, translated to HTTP errors only at the API boundary

from typing import Optional


class CityReportError(Exception):
    """Base class for every error raised by the core."""


class ImagePipelineError(CityReportError):
    """Image compression failed; no partial output is ever returned."""


class DecodeError(ImagePipelineError):
    """Source stream is unreadable, corrupt or in an unsupported format."""


class EncodeError(ImagePipelineError):
    """The compression backend failed to encode the final pixel buffer."""


class StoreUnavailable(CityReportError):
    """A collaborator (report, media or preference store) call failed.

    Propagated to the caller as-is; the core never retries.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ReportValidationError(CityReportError):
    """A raw report record is malformed and must not enter the engine."""

    def __init__(self, message: str, report_id: Optional[str] = None):
        self.report_id = report_id
        super().__init__(message)


class InvalidStatusTransition(CityReportError):
    """Requested status change would move a report backwards in its lifecycle."""

    def __init__(self, report_id: str, current: str, requested: str):
        self.report_id = report_id
        self.current = current
        self.requested = requested
        super().__init__(f"Report {report_id}: cannot move from {current} to {requested}")
