# promo/services/batch_updates.py
"""
Per-item offer writes with explicit failure accounting.

A batch is applied one offer at a time. Every item ends up either in
``succeeded`` or in ``failed`` with a reason code, and a batch with any
failed item is never reported as complete.

Writes coming from merchants go through an ``OfferWriteGate`` first, so
tier limits are enforced before the store is touched.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from promo.core.logging import get_structlog_logger
from promo.services.folders import FolderStateError
from promo.services.lifecycle import OfferLifecycle, classify_offer
from promo.services.records import MerchantAccount, OfferRecord, OfferStatus
from promo.services.tier_gate import TierLike, TierViolationError, count_live_offers, enforce_offer_tier, resolve_tier

logger = get_structlog_logger(__name__)

LIVE_LIFECYCLES = (OfferLifecycle.ACTIVE, OfferLifecycle.FUTURE)


class OfferUpdateError(Exception):
    """A single offer update was rejected by the store."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class PartialFailureError(Exception):
    def __init__(self, requested: int, succeeded: int, failures: Mapping[str, str]):
        self.code = "partial_failure"
        self.requested = requested
        self.succeeded = succeeded
        self.failures = dict(failures)
        self.message = f"{succeeded} of {requested} offer updates succeeded"
        self.details = {
            "requested": requested,
            "succeeded": succeeded,
            "failed_ids": list(self.failures),
            "failures": self.failures,
        }
        super().__init__(self.message)


@dataclass(frozen=True)
class BatchUpdateResult:
    requested: int
    succeeded: Tuple[str, ...] = ()
    # offer id -> failure code
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.failed and len(self.succeeded) == self.requested

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return tuple(self.failed)

    def raise_for_failures(self) -> None:
        if not self.is_complete:
            raise PartialFailureError(self.requested, len(self.succeeded), self.failed)


def apply_changes(offer: OfferRecord, changes: Mapping[str, Any]) -> OfferRecord:
    """The offer as it would read back after a partial update."""
    return OfferRecord.from_row({**asdict(offer), **changes})


class OfferWriteGate:
    """
    Tier checks for writes to one merchant's offers.

    A write that leaves the offer draft, expired, deleted or batch pending
    is not gated. One that keeps it live must fit the tier's offer types,
    delivery methods and feature flags. One that makes it live must also fit
    under the tier's active offer limit, counting offers released earlier
    through the same gate.
    """

    def __init__(self, tier: TierLike, offers: Iterable[OfferRecord], now: datetime):
        self.tier = resolve_tier(tier)
        self.now = now
        self._offers = {o.id: o for o in offers}

    def check(self, offer_id: str, changes: Mapping[str, Any]) -> None:
        """Raise TierViolationError if the write would break the tier's limits."""
        offer = self._offers.get(offer_id)
        if offer is None:
            # The store reports unknown offers.
            return
        updated = apply_changes(offer, changes)
        if classify_offer(updated, self.now) not in LIVE_LIFECYCLES:
            return

        active_count = None
        if classify_offer(offer, self.now) not in LIVE_LIFECYCLES:
            active_count = count_live_offers(self._offers.values(), self.now, exclude_offer_id=offer_id)
        enforce_offer_tier(updated, self.tier, OfferStatus.ACTIVE, active_count=active_count)

    def record(self, offer_id: str, changes: Mapping[str, Any]) -> None:
        offer = self._offers.get(offer_id)
        if offer is not None:
            self._offers[offer_id] = apply_changes(offer, changes)


async def load_write_gate(store, account: MerchantAccount, now: datetime) -> OfferWriteGate:
    return OfferWriteGate(account.tier, await store.list_offers(account.merchant_id), now)


async def apply_offer_updates(
    store,
    merchant_id: str,
    updates: Mapping[str, Mapping[str, Any]],
    gate: Optional[OfferWriteGate] = None,
) -> BatchUpdateResult:
    """
    Apply partial updates one offer at a time and account for every item.

    Per-item rejections (tier violations, missing offer, locked folder,
    store-level update errors) are recorded against the offer id; anything
    else propagates.
    """
    succeeded = []
    failed: Dict[str, str] = {}

    for offer_id, changes in updates.items():
        try:
            if gate is not None:
                gate.check(offer_id, changes)
            found = await store.update_offer(merchant_id, offer_id, dict(changes))
        except (OfferUpdateError, FolderStateError, TierViolationError) as e:
            failed[offer_id] = e.code
            continue
        if found:
            succeeded.append(offer_id)
            if gate is not None:
                gate.record(offer_id, changes)
        else:
            failed[offer_id] = "offer_not_found"

    result = BatchUpdateResult(requested=len(updates), succeeded=tuple(succeeded), failed=failed)
    if result.is_complete:
        logger.info("offers.batch_updated", merchant_id=merchant_id, requested=result.requested)
    else:
        logger.warning(
            "offers.batch_partial_failure",
            merchant_id=merchant_id,
            requested=result.requested,
            succeeded=len(result.succeeded),
            failed=result.failed,
        )
    return result


async def promote_batch_selection(
    store,
    merchant_id: str,
    offer_ids: Sequence[str],
    gate: Optional[OfferWriteGate] = None,
) -> BatchUpdateResult:
    """Move selected permutation offers out of batch-pending into the normal lifecycle."""
    updates = {offer_id: {"batch_pending_selection": False} for offer_id in dict.fromkeys(offer_ids)}
    return await store.apply_updates(merchant_id, updates, gate=gate)


async def write_offer(
    store,
    merchant_id: str,
    offer_id: str,
    changes: Mapping[str, Any],
    gate: OfferWriteGate,
) -> None:
    """
    Apply a single merchant edit.

    Raises TierViolationError with the full violation list, or
    OfferUpdateError carrying the store's failure code.
    """
    gate.check(offer_id, changes)
    result = await store.apply_updates(merchant_id, {offer_id: changes})
    if not result.is_complete:
        code = result.failed.get(offer_id, "update_rejected")
        raise OfferUpdateError(
            code=code,
            message=f"Offer update failed: {code}",
            details={"offer_id": offer_id},
        )
    gate.record(offer_id, changes)
