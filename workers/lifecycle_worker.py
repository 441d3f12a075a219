# workers/lifecycle_worker.py
"""
Lifecycle worker: activates, expires and auto-extends offers on a schedule.
"""
import argparse
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from promo.core.config import settings
from promo.core.logging import configure_structlog, get_structlog_logger
from promo.db.session import dispose_engine, transaction_session
from promo.services.store import OfferStore, group_by_merchant
from promo.services.sweeps import (
    ShortfallWarning,
    activation_updates,
    expiry_updates,
    extension_updates,
    offers_to_activate,
    offers_to_expire,
    plan_auto_extensions,
)

logger = get_structlog_logger()


@asynccontextmanager
async def default_store() -> AsyncIterator[OfferStore]:
    async with transaction_session() as session:
        # Status bookkeeping also applies to offers in locked campaign folders.
        yield OfferStore(session, enforce_locks=False)


@dataclass
class SweepReport:
    activated: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    extended: List[str] = field(default_factory=list)
    shortfalls: List[ShortfallWarning] = field(default_factory=list)
    # offer id -> failure code
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.failed


class LifecycleWorker:
    def __init__(
        self,
        store_factory: Callable[[], Any] = default_store,
        interval: Optional[timedelta] = None,
        catchup: Optional[timedelta] = None,
        lookahead: Optional[timedelta] = None,
        default_extension_days: Optional[int] = None,
    ):
        self.store_factory = store_factory
        self.interval = interval or timedelta(minutes=settings.sweep_interval_minutes)
        self.catchup = catchup or timedelta(hours=settings.activation_catchup_hours)
        self.lookahead = lookahead or timedelta(hours=settings.auto_extend_lookahead_hours)
        self.default_extension_days = default_extension_days or settings.default_extension_days
        # Only advanced by runs in which every update landed.
        self.last_successful_run: Optional[datetime] = None

    def activation_window(self, now: datetime) -> timedelta:
        if self.last_successful_run is None:
            return self.catchup
        return now - self.last_successful_run

    async def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or datetime.now(timezone.utc)
        report = SweepReport()

        async with self.store_factory() as store:
            candidates = await store.list_sweep_candidates()
            by_id = {o.id: o for o in candidates}

            to_activate = offers_to_activate(candidates, now, self.activation_window(now))
            to_expire = offers_to_expire(candidates, now)
            plan = plan_auto_extensions(candidates, now, self.lookahead, self.default_extension_days)

            updates: Dict[str, Dict[str, Any]] = {}
            for batch in (
                activation_updates(to_activate, now),
                expiry_updates(to_expire),
                extension_updates(plan.extensions, now),
            ):
                for offer_id, changes in batch.items():
                    updates.setdefault(offer_id, {}).update(changes)

            succeeded = set()
            for merchant_id, merchant_updates in group_by_merchant(updates, by_id).items():
                result = await store.apply_updates(merchant_id, merchant_updates)
                succeeded.update(result.succeeded)
                report.failed.update(result.failed)

        report.activated = [o.id for o in to_activate if o.id in succeeded]
        report.expired = [o.id for o in to_expire if o.id in succeeded]
        report.extended = [e.offer_id for e in plan.extensions if e.offer_id in succeeded]
        report.shortfalls = list(plan.shortfalls)

        for warning in report.shortfalls:
            logger.warning(
                "offer.shortfall_warning",
                offer_id=warning.offer_id,
                merchant_id=warning.merchant_id,
                units_sold=warning.units_sold,
                target_units=warning.target_units,
            )

        if report.is_complete:
            self.last_successful_run = now
        logger.info(
            "lifecycle_sweep.completed",
            activated=len(report.activated),
            expired=len(report.expired),
            extended=len(report.extended),
            shortfalls=len(report.shortfalls),
            failed=len(report.failed),
        )
        return report

    async def run_forever(self) -> None:
        logger.info("lifecycle_worker.starting", interval_seconds=self.interval.total_seconds())
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("lifecycle_sweep.error", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval.total_seconds())


async def worker_main(once: bool = False) -> None:
    worker = LifecycleWorker()
    try:
        if once:
            await worker.run_once()
        else:
            await worker.run_forever()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    configure_structlog()
    parser = argparse.ArgumentParser(description="Offer lifecycle sweep worker")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()
    asyncio.run(worker_main(once=args.once))
