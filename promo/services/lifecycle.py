# promo/services/lifecycle.py
"""
Offer lifecycle classification.

Every offer falls into exactly one bucket at a given instant. Rules are
evaluated in a fixed order and the first match wins:

1. deleted
2. batch pending selection
3. draft (start or end date missing, or unparseable)
4. expired (end <= now, checked before the start date)
5. future (start > now)
6. active

The stored ``status`` column is only a cache of this result. It never
overrides the computed bucket; disagreements are reported by
``find_status_divergences``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from promo.core.logging import get_structlog_logger
from promo.services.records import (
    FolderRecord,
    FolderStatus,
    OfferRecord,
    OfferStatus,
    TimestampLike,
    coerce_timestamp,
)

logger = get_structlog_logger(__name__)


class OfferLifecycle(str, Enum):
    DELETED = "deleted"
    BATCH_PENDING = "batch_pending"
    DRAFT = "draft"
    ACTIVE = "active"
    FUTURE = "future"
    EXPIRED = "expired"


SCHEDULED_LIFECYCLES = (
    OfferLifecycle.DRAFT,
    OfferLifecycle.ACTIVE,
    OfferLifecycle.FUTURE,
    OfferLifecycle.EXPIRED,
)

# Stored statuses consistent with each computed lifecycle. The cache may lag
# the dates by one sweep interval.
_COMPATIBLE_STATUSES: Mapping[OfferLifecycle, FrozenSet[OfferStatus]] = {
    OfferLifecycle.DRAFT: frozenset({OfferStatus.DRAFT}),
    OfferLifecycle.FUTURE: frozenset({OfferStatus.DRAFT, OfferStatus.ACTIVE}),
    OfferLifecycle.ACTIVE: frozenset({OfferStatus.DRAFT, OfferStatus.ACTIVE}),
    OfferLifecycle.EXPIRED: frozenset({OfferStatus.ACTIVE, OfferStatus.EXPIRED}),
}


@dataclass(frozen=True)
class LifecyclePartition:
    lifecycle: OfferLifecycle
    offers: Tuple[OfferRecord, ...] = ()
    by_folder: Dict[str, List[OfferRecord]] = field(default_factory=dict)
    without_folder: Tuple[OfferRecord, ...] = ()
    folders: Tuple[FolderRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.offers)


@dataclass(frozen=True)
class CategorizedOffers:
    draft: LifecyclePartition
    active: LifecyclePartition
    future: LifecyclePartition
    expired: LifecyclePartition
    deleted: LifecyclePartition
    batch_pending: LifecyclePartition
    # Batch-pending offers followed by drafts: everything not yet scheduled.
    stage1: Tuple[OfferRecord, ...] = ()

    def partition(self, lifecycle: OfferLifecycle) -> LifecyclePartition:
        return getattr(self, lifecycle.value)

    def partitions(self) -> Tuple[LifecyclePartition, ...]:
        return (self.deleted, self.batch_pending, self.draft, self.active, self.future, self.expired)


@dataclass(frozen=True)
class StatusDivergence:
    offer_id: str
    stored: OfferStatus
    computed: OfferLifecycle


def _align(value: datetime, now: datetime) -> datetime:
    """Make value comparable with now; naive values are read in now's zone."""
    if value.tzinfo is None and now.tzinfo is not None:
        return value.replace(tzinfo=now.tzinfo)
    if value.tzinfo is not None and now.tzinfo is None:
        try:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            # UTC equivalent falls outside the datetime range; pin to that end.
            return datetime.min if value.year == datetime.min.year else datetime.max
    return value


def parse_offer_time(value: TimestampLike, now: datetime) -> Optional[datetime]:
    parsed = coerce_timestamp(value)
    if parsed is None:
        return None
    return _align(parsed, now)


def classify_offer(offer: OfferRecord, now: datetime) -> OfferLifecycle:
    if offer.is_deleted:
        return OfferLifecycle.DELETED
    if offer.batch_pending_selection:
        return OfferLifecycle.BATCH_PENDING

    start = parse_offer_time(offer.start_date, now)
    end = parse_offer_time(offer.end_date, now)
    if start is None or end is None:
        return OfferLifecycle.DRAFT
    if end <= now:
        return OfferLifecycle.EXPIRED
    if start > now:
        return OfferLifecycle.FUTURE
    return OfferLifecycle.ACTIVE


def group_by_folder(offers: Iterable[OfferRecord]) -> Tuple[Dict[str, List[OfferRecord]], List[OfferRecord]]:
    by_folder: Dict[str, List[OfferRecord]] = {}
    without_folder: List[OfferRecord] = []
    for offer in offers:
        if offer.campaign_folder:
            by_folder.setdefault(offer.campaign_folder, []).append(offer)
        else:
            without_folder.append(offer)
    return by_folder, without_folder


def _partition(
    lifecycle: OfferLifecycle,
    offers: List[OfferRecord],
    folders: Sequence[FolderRecord],
) -> LifecyclePartition:
    by_folder, without_folder = group_by_folder(offers)
    return LifecyclePartition(
        lifecycle=lifecycle,
        offers=tuple(offers),
        by_folder=by_folder,
        without_folder=tuple(without_folder),
        folders=tuple(folders),
    )


def categorize_offers(
    offers: Iterable[OfferRecord],
    folders: Iterable[FolderRecord],
    now: datetime,
) -> CategorizedOffers:
    """
    Split offers into lifecycle partitions, each grouped by folder.

    Draft folders are exposed only next to draft offers and promoted
    (campaign) folders only next to active, future and expired offers. The
    deleted and batch-pending partitions expose just the folders that
    actually hold one of their offers.
    """
    folders = list(folders)
    buckets: Dict[OfferLifecycle, List[OfferRecord]] = {lc: [] for lc in OfferLifecycle}
    for offer in offers:
        buckets[classify_offer(offer, now)].append(offer)

    draft_folders = [f for f in folders if f.status == FolderStatus.DRAFT]
    campaign_folders = [f for f in folders if f.status == FolderStatus.CAMPAIGN]

    def _holding(lifecycle: OfferLifecycle) -> List[FolderRecord]:
        ids = {o.campaign_folder for o in buckets[lifecycle] if o.campaign_folder}
        return [f for f in folders if f.id in ids]

    return CategorizedOffers(
        draft=_partition(OfferLifecycle.DRAFT, buckets[OfferLifecycle.DRAFT], draft_folders),
        active=_partition(OfferLifecycle.ACTIVE, buckets[OfferLifecycle.ACTIVE], campaign_folders),
        future=_partition(OfferLifecycle.FUTURE, buckets[OfferLifecycle.FUTURE], campaign_folders),
        expired=_partition(OfferLifecycle.EXPIRED, buckets[OfferLifecycle.EXPIRED], campaign_folders),
        deleted=_partition(OfferLifecycle.DELETED, buckets[OfferLifecycle.DELETED], _holding(OfferLifecycle.DELETED)),
        batch_pending=_partition(
            OfferLifecycle.BATCH_PENDING,
            buckets[OfferLifecycle.BATCH_PENDING],
            _holding(OfferLifecycle.BATCH_PENDING),
        ),
        stage1=tuple(buckets[OfferLifecycle.BATCH_PENDING] + buckets[OfferLifecycle.DRAFT]),
    )


def reconcile_status(offer: OfferRecord, now: datetime) -> Optional[StatusDivergence]:
    if offer.status is None:
        return None
    computed = classify_offer(offer, now)
    compatible = _COMPATIBLE_STATUSES.get(computed)
    if compatible is None or offer.status in compatible:
        return None
    return StatusDivergence(offer_id=offer.id, stored=offer.status, computed=computed)


def find_status_divergences(offers: Iterable[OfferRecord], now: datetime) -> List[StatusDivergence]:
    divergences = []
    for offer in offers:
        divergence = reconcile_status(offer, now)
        if divergence is None:
            continue
        logger.warning(
            "lifecycle.status_divergence",
            offer_id=divergence.offer_id,
            stored_status=divergence.stored.value,
            computed_lifecycle=divergence.computed.value,
        )
        divergences.append(divergence)
    return divergences
