"""
Report aggregation engine.
- Derives read-only views (filtered lists, trending, per-user stats) from a report snapshot.
- Selects expiry candidates for the lifecycle sweep without touching the reports.
- Pure and stateless per call: safe to share between concurrent callers.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional, Sequence, Union

from cityreport.models.report_model import (
    URGENT_SEVERITY,
    Report,
    ReportCategory,
    ReportStatus,
    UserStats,
)
from cityreport.utils.helpers import ensure_utc, month_key

StatusFilter = Union[ReportStatus, str, None]

ALL_FILTERS = ("all", "semua")
URGENT_FILTERS = ("urgent", "mendesak")


class ExpirySweep(NamedTuple):
    """Ids selected by a sweep; unpacks as ``(closed_ids, count)``."""

    closed_ids: List[str]
    count: int


class ReportAggregationEngine:
    """Compute derived views over a fixed-at-call-time list of reports.

    Every method is a pure function of its arguments: inputs are never
    mutated and results are fresh lists.
    """

    def __init__(
        self,
        popular_window: timedelta = timedelta(days=7),
        urgent_severity: int = URGENT_SEVERITY,
    ):
        self.popular_window = popular_window
        self.urgent_severity = urgent_severity

    # ---------------------------
    # Lists
    # ---------------------------
    def filter_and_sort(
        self,
        reports: Sequence[Report],
        status_filter: StatusFilter = None,
        severity_threshold: Optional[int] = None,
        sort_newest_first: bool = True,
    ) -> List[Report]:
        """Filter by status / severity, then stable-sort on ``createdAt``.

        ``status_filter`` is a ReportStatus, ``"all"`` (or None) for no status
        filter, or ``"urgent"``, a shortcut for ``severity >= 4``.
        """
        status, urgent = self._parse_status_filter(status_filter)
        threshold = severity_threshold
        if urgent:
            threshold = max(threshold or 0, self.urgent_severity)

        selected = [
            r for r in reports
            if (status is None or r.status == status)
            and (threshold is None or r.severity >= threshold)
        ]
        # sorted() keeps equal keys in input order, also with reverse=True
        return sorted(selected, key=lambda r: r.createdAt, reverse=sort_newest_first)

    def urgent_reports(self, reports: Sequence[Report]) -> List[Report]:
        return self.filter_and_sort(reports, status_filter="urgent", sort_newest_first=True)

    def popular_this_week(
        self,
        reports: Sequence[Report],
        now: datetime,
        limit: Optional[int] = None,
    ) -> List[Report]:
        """Most-voted reports created in ``[now - window, now)``.

        Ties on votes go to the more recent report; full ties keep input order.
        """
        now = ensure_utc(now)
        window_start = now - self.popular_window
        recent = [r for r in reports if window_start <= r.createdAt < now]
        ranked = sorted(recent, key=lambda r: (r.votes, r.createdAt), reverse=True)
        if limit is not None:
            if limit < 0:
                raise ValueError("limit must be non-negative")
            ranked = ranked[:limit]
        return ranked

    # ---------------------------
    # Statistics
    # ---------------------------
    def stats_for_user(self, reports: Sequence[Report], user_id: str) -> UserStats:
        own = [r for r in reports if r.userId == user_id]
        if not own:
            return UserStats()
        return UserStats(
            totalReports=len(own),
            resolvedCount=sum(1 for r in own if r.status == ReportStatus.COMPLETED),
            totalVotes=sum(r.votes for r in own),
            lastReportDate=max(r.createdAt for r in own),
        )

    def monthly_counts(self, reports: Sequence[Report]) -> Dict[str, int]:
        """Report count per ``YYYY-MM`` month, in chronological order."""
        counts = Counter(month_key(r.createdAt) for r in reports)
        return dict(sorted(counts.items()))

    def category_distribution(self, reports: Sequence[Report]) -> Dict[ReportCategory, int]:
        counts = Counter(r.category for r in reports)
        order = list(ReportCategory)
        return dict(sorted(counts.items(), key=lambda kv: (-kv[1], order.index(kv[0]))))

    def average_response_days(self, reports: Sequence[Report]) -> float:
        """Mean days between creation and last update over completed reports."""
        durations = [
            (r.updatedAt - r.createdAt).total_seconds() / 86400
            for r in reports
            if r.status == ReportStatus.COMPLETED
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def sweep_expired(
        self,
        reports: Sequence[Report],
        now: datetime,
        expiry_after: timedelta,
    ) -> ExpirySweep:
        """Select completed reports idle for at least ``expiry_after``.

        Selection only: Completed is terminal, so no new status is proposed.
        The ids are handed to an external archival/notification step.
        """
        now = ensure_utc(now)
        closed_ids = [
            r.id for r in reports
            if r.status == ReportStatus.COMPLETED and now - r.updatedAt >= expiry_after
        ]
        return ExpirySweep(closed_ids=closed_ids, count=len(closed_ids))

    # ---------------------------
    # Internal helpers
    # ---------------------------
    def _parse_status_filter(self, status_filter: StatusFilter):
        if status_filter is None or isinstance(status_filter, ReportStatus):
            return status_filter, False
        key = str(status_filter).strip().lower()
        if key in ALL_FILTERS or not key:
            return None, False
        if key in URGENT_FILTERS:
            return None, True
        status = ReportStatus.lookup(status_filter)
        if status is None:
            raise ValueError(f"Unknown status filter: {status_filter!r}")
        return status, False
