# tests/test_batch_updates.py
import asyncio
from datetime import timedelta

import pytest

from promo.services.batch_updates import (
    BatchUpdateResult,
    OfferUpdateError,
    OfferWriteGate,
    PartialFailureError,
    apply_offer_updates,
    load_write_gate,
    promote_batch_selection,
    write_offer,
)
from promo.services.lifecycle import OfferLifecycle, classify_offer
from promo.services.records import DeliveryMethod, MembershipTier
from promo.services.tier_gate import TierViolationError

from support import NOW, MemoryStore, make_account, make_offer

HOUR = timedelta(hours=1)


class _FlakyStore:
    """Accepts some ids, rejects some, and has never heard of the rest."""

    def __init__(self, ok=(), rejected=()):
        self.ok = set(ok)
        self.rejected = set(rejected)
        self.calls = []

    async def update_offer(self, merchant_id, offer_id, changes):
        self.calls.append((merchant_id, offer_id, changes))
        if offer_id in self.rejected:
            raise OfferUpdateError(code="update_rejected", message="nope")
        return offer_id in self.ok


def test_every_item_is_accounted_for():
    store = _FlakyStore(ok={"a", "b"}, rejected={"c"})
    result = asyncio.run(apply_offer_updates(store, "m1", {
        "a": {"max_clicks_allowed": 1},
        "b": {"max_clicks_allowed": 1},
        "c": {"max_clicks_allowed": 1},
        "d": {"max_clicks_allowed": 1},
    }))
    assert result.requested == 4
    assert result.succeeded == ("a", "b")
    assert result.failed == {"c": "update_rejected", "d": "offer_not_found"}
    assert not result.is_complete
    assert len(store.calls) == 4


def test_partial_failure_raises_with_counts():
    result = BatchUpdateResult(requested=3, succeeded=("a",), failed={"b": "offer_not_found", "c": "folder_locked"})
    with pytest.raises(PartialFailureError) as exc_info:
        result.raise_for_failures()
    err = exc_info.value
    assert err.code == "partial_failure"
    assert err.details["requested"] == 3
    assert err.details["succeeded"] == 1
    assert sorted(err.details["failed_ids"]) == ["b", "c"]


def test_complete_batch_does_not_raise():
    result = asyncio.run(apply_offer_updates(_FlakyStore(ok={"a"}), "m1", {"a": {"title": "x"}}))
    assert result.is_complete
    result.raise_for_failures()


def test_promote_batch_selection_releases_offers():
    offers = [
        make_offer("p1", batch_pending_selection=True),
        make_offer("p2", batch_pending_selection=True),
        make_offer("p3", batch_pending_selection=True),
    ]
    store = MemoryStore(offers=offers)

    result = asyncio.run(promote_batch_selection(store, "m1", ["p1", "p2", "p1"]))

    assert result.requested == 2
    assert result.is_complete
    assert classify_offer(store.offers["p1"], NOW) == OfferLifecycle.DRAFT
    assert classify_offer(store.offers["p3"], NOW) == OfferLifecycle.BATCH_PENDING
    assert store.commits == 1


def test_promote_batch_selection_reports_foreign_offers():
    store = MemoryStore(offers=[make_offer("p1", merchant_id="other", batch_pending_selection=True)])
    result = asyncio.run(promote_batch_selection(store, "m1", ["p1"]))
    assert result.failed == {"p1": "offer_not_found"}


def _scheduled(offer_id, **kw):
    return make_offer(offer_id, start_date=NOW - HOUR, end_date=NOW + HOUR, **kw)


def _gated_store(tier, offers):
    store = MemoryStore(offers=offers, accounts=[make_account("m1", tier=tier)])
    gate = asyncio.run(load_write_gate(store, store.accounts["m1"], NOW))
    return store, gate


def test_release_over_the_active_limit_is_rejected():
    store, gate = _gated_store(MembershipTier.NEST, [
        _scheduled("live"),
        _scheduled("p1", batch_pending_selection=True),
        _scheduled("p2", batch_pending_selection=True, coupon_delivery_method=DeliveryMethod.MOBILE_WALLET_PASSES),
    ])

    result = asyncio.run(promote_batch_selection(store, "m1", ["p1", "p2"], gate=gate))

    assert result.succeeded == ()
    assert result.failed == {"p1": "tier_violation", "p2": "tier_violation"}
    assert store.offers["p1"].batch_pending_selection is True
    assert store.offers["p2"].batch_pending_selection is True


def test_releases_in_one_batch_count_toward_the_limit():
    store, gate = _gated_store(MembershipTier.FREEBYRD, [
        _scheduled("live"),
        _scheduled("p1", batch_pending_selection=True),
        _scheduled("p2", batch_pending_selection=True),
        _scheduled("p3", batch_pending_selection=True),
    ])

    result = asyncio.run(promote_batch_selection(store, "m1", ["p1", "p2", "p3"], gate=gate))

    assert result.succeeded == ("p1", "p2")
    assert result.failed == {"p3": "tier_violation"}


def test_release_into_draft_is_not_gated():
    store, gate = _gated_store(MembershipTier.NEST, [
        _scheduled("live"),
        make_offer("p1", batch_pending_selection=True, auto_extend=True),
    ])
    result = asyncio.run(promote_batch_selection(store, "m1", ["p1"], gate=gate))
    assert result.is_complete


def test_live_offer_edits_skip_the_count_but_not_the_features():
    store, gate = _gated_store(MembershipTier.NEST, [_scheduled("live"), _scheduled("other")])

    # Already over the limit; a budget edit still goes through.
    budget = asyncio.run(apply_offer_updates(store, "m1", {"live": {"max_clicks_allowed": 5}}, gate=gate))
    assert budget.is_complete

    feature = asyncio.run(apply_offer_updates(store, "m1", {"live": {"auto_extend": True}}, gate=gate))
    assert feature.failed == {"live": "tier_violation"}
    assert store.offers["live"].auto_extend is False


def test_gate_ignores_unknown_offers():
    gate = OfferWriteGate(MembershipTier.NEST, [], NOW)
    gate.check("ghost", {"auto_extend": True})


def test_write_offer_raises_the_full_violation():
    store, gate = _gated_store(MembershipTier.NEST, [make_offer("d1")])
    changes = {
        "start_date": NOW - HOUR,
        "end_date": NOW + HOUR,
        "coupon_delivery_method": "mobile_wallet_passes",
        "auto_extend": True,
    }

    with pytest.raises(TierViolationError) as exc_info:
        asyncio.run(write_offer(store, "m1", "d1", changes, gate))

    assert [v.field for v in exc_info.value.violations] == ["auto_extend", "coupon_delivery_method"]
    assert classify_offer(store.offers["d1"], NOW) == OfferLifecycle.DRAFT


def test_write_offer_reports_missing_offers():
    store, gate = _gated_store(MembershipTier.SOAR, [])
    with pytest.raises(OfferUpdateError) as exc_info:
        asyncio.run(write_offer(store, "m1", "ghost", {"title": "x"}, gate))
    assert exc_info.value.code == "offer_not_found"
