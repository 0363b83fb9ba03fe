#!/usr/bin/env python3
"""
Report lifecycle scheduler.

Runs the expiry sweep opportunistically (process start) at most once per
interval. The only persisted state is ``last_sweep_at`` (epoch milliseconds)
in the preference store; it is written only after a successful sweep, so a
failed sweep is retried at the next opportunity.

This is not a cron: under low usage intervals stretch, but they never shrink
below the configured interval.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from cityreport.models.report_model import Report
from cityreport.services.aggregation_service import ExpirySweep, ReportAggregationEngine
from cityreport.services.preference_service import LAST_SWEEP_AT_KEY, PreferenceStore
from cityreport.services.report_store import ReportStore
from cityreport.utils.helpers import resolve_now, to_epoch_millis

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = timedelta(hours=24)

ExpiredHook = Callable[[List[str]], Awaitable[None]]
SweepCallable = Callable[[datetime], Awaitable[ExpirySweep]]


class SweepStatus(Enum):
    NO_OP = "no_op"  # not due yet; a normal outcome, not an error
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SweepOutcome:
    status: SweepStatus
    last_sweep_at: int
    result: Optional[ExpirySweep] = None
    error: Optional[BaseException] = None


def should_run(now_ms: int, last_sweep_at: int, interval: timedelta = DEFAULT_SWEEP_INTERVAL) -> bool:
    """True when no sweep ever ran, or the last one is strictly older than ``interval``."""
    if not last_sweep_at:
        return True
    interval_ms = int(interval.total_seconds() * 1000)
    return now_ms - last_sweep_at > interval_ms


def record_run(now_ms: int) -> int:
    """New ``last_sweep_at`` value; call only after a successful sweep."""
    return int(now_ms)


class ExpirySweeper:
    """Fetch all reports, select expiry candidates and pass them on.

    Issues no writes itself; the optional ``on_expired`` hook decides the
    follow-up action (archival, notification) for the selected ids.
    """

    def __init__(
        self,
        store: ReportStore,
        engine: ReportAggregationEngine,
        expiry_after: timedelta,
        on_expired: Optional[ExpiredHook] = None,
    ):
        self.store = store
        self.engine = engine
        self.expiry_after = expiry_after
        self.on_expired = on_expired

    async def __call__(self, now: datetime) -> ExpirySweep:
        reports: List[Report] = await self.store.fetch_all()
        sweep = self.engine.sweep_expired(reports, now, self.expiry_after)
        logger.info(f"🧹 Expiry sweep selected {sweep.count}/{len(reports)} reports")
        if sweep.closed_ids and self.on_expired is not None:
            await self.on_expired(list(sweep.closed_ids))
        return sweep


class LifecycleScheduler:
    """At-most-once-per-interval runner for the expiry sweep.

    One instance per process; its lock serialises the read-check-write of
    ``last_sweep_at`` so concurrent triggers cannot sweep twice.
    """

    def __init__(self, preferences: PreferenceStore, interval: timedelta = DEFAULT_SWEEP_INTERVAL):
        self.preferences = preferences
        self.interval = interval
        self._lock = asyncio.Lock()

    async def run_if_due(self, sweep: SweepCallable, now: Optional[datetime] = None) -> SweepOutcome:
        """Run ``sweep`` when due. Never raises: failures are logged and reported."""
        async with self._lock:
            now = resolve_now(now)
            now_ms = to_epoch_millis(now)

            try:
                last_sweep_at = await self.preferences.get_int(LAST_SWEEP_AT_KEY, 0)
            except Exception as e:
                logger.error(f"❌ Could not read {LAST_SWEEP_AT_KEY}: {e}", exc_info=True)
                return SweepOutcome(SweepStatus.FAILED, last_sweep_at=0, error=e)

            if not should_run(now_ms, last_sweep_at, self.interval):
                logger.debug(f"Sweep not due (last run at {last_sweep_at})")
                return SweepOutcome(SweepStatus.NO_OP, last_sweep_at=last_sweep_at)

            try:
                result = await sweep(now)
            except Exception as e:
                # Timestamp untouched so the next opportunity retries
                logger.error(f"❌ Expiry sweep failed: {e}", exc_info=True)
                return SweepOutcome(SweepStatus.FAILED, last_sweep_at=last_sweep_at, error=e)

            new_last_sweep_at = record_run(now_ms)
            try:
                await self.preferences.set_int(LAST_SWEEP_AT_KEY, new_last_sweep_at)
            except Exception as e:
                logger.error(f"❌ Sweep done but {LAST_SWEEP_AT_KEY} not saved: {e}", exc_info=True)
                return SweepOutcome(SweepStatus.FAILED, last_sweep_at=last_sweep_at, result=result, error=e)

            logger.info(f"✅ Expiry sweep completed: {result.count} candidates")
            return SweepOutcome(SweepStatus.COMPLETED, last_sweep_at=new_last_sweep_at, result=result)
