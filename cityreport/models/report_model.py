from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, computed_field, field_validator

from cityreport.utils.helpers import parse_timestamp

URGENT_SEVERITY = 4

_E = TypeVar("_E", bound=Enum)


def _normalize(value: str) -> str:
    return " ".join(str(value).strip().lower().replace("_", " ").replace("-", " ").split())


def _lookup(enum_cls: Type[_E], value, aliases: Dict[str, str]) -> Optional[_E]:
    """Match a wire value, a member name or an alias, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return None
    key = _normalize(value)
    if not key:
        return None
    for member in enum_cls:
        if key in (_normalize(member.value), _normalize(member.name)):
            return member
    alias = aliases.get(key)
    return enum_cls[alias] if alias else None


# Aliases live outside the Enum bodies so they do not become members
_STATUS_ALIASES = {
    "menunggu": "NEW",
    "pending": "NEW",
    "open": "NEW",
    "inprogress": "IN_PROGRESS",
    "processing": "IN_PROGRESS",
    "resolved": "COMPLETED",
    "done": "COMPLETED",
    "declined": "REJECTED",
}

_PRIORITY_ALIASES = {
    "rendah": "LOW",
    "sedang": "MEDIUM",
    "tinggi": "HIGH",
}

_CATEGORY_ALIASES = {
    "road damage": "ROAD_DAMAGE",
    "pothole": "ROAD_DAMAGE",
    "garbage": "GARBAGE",
    "trash": "GARBAGE",
    "street light": "STREET_LIGHT",
    "streetlight": "STREET_LIGHT",
    "drainage": "DRAINAGE",
    "flood": "FLOOD",
    "fasilitas": "PUBLIC_FACILITY",
    "public facility": "PUBLIC_FACILITY",
    "other": "OTHER",
}


class ReportStatus(str, Enum):
    NEW = "Baru"
    IN_PROGRESS = "Diproses"
    COMPLETED = "Selesai"
    REJECTED = "Ditolak"

    @classmethod
    def lookup(cls, value) -> Optional["ReportStatus"]:
        return _lookup(cls, value, _STATUS_ALIASES)

    @classmethod
    def from_string(cls, value) -> "ReportStatus":
        """Unknown or empty values fall back to NEW."""
        return cls.lookup(value) or cls.NEW

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.COMPLETED, ReportStatus.REJECTED)

    def can_transition_to(self, new_status: "ReportStatus") -> bool:
        """Lifecycle only moves forward: New -> InProgress -> Completed, or to Rejected."""
        if new_status == self:
            return True
        if self.is_terminal or new_status == ReportStatus.NEW:
            return False
        if new_status == ReportStatus.REJECTED:
            return True
        order = (ReportStatus.NEW, ReportStatus.IN_PROGRESS, ReportStatus.COMPLETED)
        return order.index(new_status) > order.index(self)


class ReportPriority(str, Enum):
    LOW = "Rendah"
    MEDIUM = "Sedang"
    HIGH = "Tinggi"

    @classmethod
    def from_string(cls, value) -> "ReportPriority":
        return _lookup(cls, value, _PRIORITY_ALIASES) or cls.MEDIUM


class ReportCategory(str, Enum):
    ROAD_DAMAGE = "Jalan Rusak"
    GARBAGE = "Sampah"
    STREET_LIGHT = "Lampu Jalan"
    DRAINAGE = "Drainase"
    FLOOD = "Banjir"
    PUBLIC_FACILITY = "Fasilitas Umum"
    OTHER = "Lainnya"

    @classmethod
    def from_string(cls, value) -> "ReportCategory":
        return _lookup(cls, value, _CATEGORY_ALIASES) or cls.OTHER


class Report(BaseModel):
    """A citizen-submitted civic issue, as read from the report store.

    Immutable: the core only derives views from reports, it never edits them.
    Timestamps are normalised to timezone-aware UTC.
    """

    id: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    category: ReportCategory = ReportCategory.OTHER
    status: ReportStatus = ReportStatus.NEW
    priority: ReportPriority = ReportPriority.MEDIUM
    severity: int = Field(default=3, ge=1, le=5)
    latitude: float = 0.0
    longitude: float = 0.0
    locationName: str = ""
    address: str = ""
    photoId: Optional[str] = None
    completionPhotoId: Optional[str] = None
    votes: int = Field(default=0, ge=0)
    userId: str = Field(min_length=1)
    createdAt: datetime
    updatedAt: datetime

    class Config:
        frozen = True

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v):
        return ReportCategory.from_string(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        return ReportStatus.from_string(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return ReportPriority.from_string(v)

    @field_validator("createdAt", "updatedAt", mode="before")
    @classmethod
    def _timestamp(cls, v):
        return parse_timestamp(v)

    @field_validator("photoId", "completionPhotoId", mode="before")
    @classmethod
    def _blank_photo(cls, v):
        # completionPhotoId is stored as "" until an admin uploads one
        if isinstance(v, str) and not v.strip():
            return None
        return v


class UserStats(BaseModel):
    """Per-user resolution statistics derived from that user's reports."""

    totalReports: int = 0
    resolvedCount: int = 0
    totalVotes: int = 0
    lastReportDate: Optional[datetime] = None

    @computed_field
    @property
    def resolvedPercentage(self) -> int:
        # Rounded half-up, integer arithmetic only
        if self.totalReports <= 0:
            return 0
        return (self.resolvedCount * 200 + self.totalReports) // (2 * self.totalReports)

    @computed_field
    @property
    def averageVotes(self) -> int:
        if self.totalReports <= 0:
            return 0
        return self.totalVotes // self.totalReports


@dataclass(frozen=True)
class CompressedImage:
    """Encoded output of the image pipeline, owned by the caller."""

    data: bytes = field(repr=False)
    width: int
    height: int
    content_type: str = "image/jpeg"

    @property
    def byte_length(self) -> int:
        return len(self.data)
