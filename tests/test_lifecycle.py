# tests/test_lifecycle.py
import itertools
from datetime import datetime, timedelta

import pytest

from promo.services.lifecycle import (
    OfferLifecycle,
    categorize_offers,
    classify_offer,
    find_status_divergences,
    group_by_folder,
    reconcile_status,
)
from promo.services.records import FolderStatus, OfferStatus, coerce_timestamp

from support import NOW, make_folder, make_offer

HOUR = timedelta(hours=1)


def _live(offer_id, **kw):
    return make_offer(offer_id, start_date=NOW - HOUR, end_date=NOW + HOUR, **kw)


def test_deleted_wins_over_every_other_state():
    offer = make_offer(
        "o1",
        is_deleted=True,
        batch_pending_selection=True,
        start_date=NOW - 2 * HOUR,
        end_date=NOW - HOUR,
    )
    assert classify_offer(offer, NOW) == OfferLifecycle.DELETED


def test_batch_pending_wins_over_dates():
    offer = _live("o1", batch_pending_selection=True)
    assert classify_offer(offer, NOW) == OfferLifecycle.BATCH_PENDING


def test_missing_date_is_draft():
    assert classify_offer(make_offer("o1", start_date=NOW), NOW) == OfferLifecycle.DRAFT
    assert classify_offer(make_offer("o2", end_date=NOW + HOUR), NOW) == OfferLifecycle.DRAFT
    assert classify_offer(make_offer("o3"), NOW) == OfferLifecycle.DRAFT


def test_missing_start_with_string_end_is_draft():
    offer = make_offer("o1", start_date=None, end_date="2025-01-01T00:00")
    assert classify_offer(offer, NOW) == OfferLifecycle.DRAFT


def test_extreme_offsets_with_naive_now():
    naive_now = datetime(2025, 6, 1, 12)
    offer = make_offer("o1", start_date="0001-01-01T00:00+05:00", end_date="9999-12-31T23:59-05:00")
    assert classify_offer(offer, naive_now) == OfferLifecycle.ACTIVE

    ended = make_offer("o2", start_date="0001-01-01T00:00+05:00", end_date="0001-01-01T01:00+05:00")
    assert classify_offer(ended, naive_now) == OfferLifecycle.EXPIRED

    later = make_offer("o3", start_date="9999-12-31T23:00-05:00", end_date="9999-12-31T23:59-05:00")
    assert classify_offer(later, naive_now) == OfferLifecycle.FUTURE


def test_malformed_dates_are_draft():
    offer = make_offer("o1", start_date="not-a-date", end_date="2025-13-45T99:00")
    assert classify_offer(offer, NOW) == OfferLifecycle.DRAFT


def test_expired_checked_before_future():
    # Start in the future but end already passed.
    offer = make_offer("o1", start_date=NOW + HOUR, end_date=NOW - HOUR)
    assert classify_offer(offer, NOW) == OfferLifecycle.EXPIRED


def test_boundaries():
    assert classify_offer(make_offer("o1", start_date=NOW - HOUR, end_date=NOW), NOW) == OfferLifecycle.EXPIRED
    assert classify_offer(make_offer("o2", start_date=NOW, end_date=NOW + HOUR), NOW) == OfferLifecycle.ACTIVE
    assert classify_offer(make_offer("o3", start_date=NOW + HOUR, end_date=NOW + 2 * HOUR), NOW) == OfferLifecycle.FUTURE


def test_iso_strings_and_naive_datetimes():
    offer = make_offer("o1", start_date="2025-06-01T11:00:00Z", end_date="2025-06-01T13:00:00+00:00")
    assert classify_offer(offer, NOW) == OfferLifecycle.ACTIVE

    naive = make_offer("o2", start_date=datetime(2025, 6, 1, 11), end_date=datetime(2025, 6, 1, 13))
    assert classify_offer(naive, NOW) == OfferLifecycle.ACTIVE


def _mixed_offers():
    return [
        make_offer("deleted", is_deleted=True, campaign_folder="fd"),
        make_offer("batch", batch_pending_selection=True, campaign_folder="fd"),
        make_offer("draft1", campaign_folder="fd"),
        make_offer("draft2"),
        _live("active1", campaign_folder="fc"),
        _live("active2"),
        make_offer("future", start_date=NOW + HOUR, end_date=NOW + 2 * HOUR, campaign_folder="fc"),
        make_offer("expired", start_date=NOW - 2 * HOUR, end_date=NOW - HOUR),
    ]


def _folders():
    return [make_folder("fd"), make_folder("fc", status=FolderStatus.CAMPAIGN)]


def test_partitions_are_complete_and_disjoint():
    offers = _mixed_offers()
    result = categorize_offers(offers, _folders(), NOW)

    seen = [o.id for p in result.partitions() for o in p.offers]
    assert sorted(seen) == sorted(o.id for o in offers)
    assert len(seen) == len(set(seen))
    assert sum(len(p) for p in result.partitions()) == len(offers)


_POSITIONS = {
    "missing": None,
    "past": NOW - HOUR,
    "future": NOW + HOUR,
    "malformed": "not-a-date",
}
_COMBINATIONS = list(itertools.product((False, True), (False, True), _POSITIONS, _POSITIONS))


def _combination_offer(deleted, batch, start, end):
    return make_offer(
        f"{int(deleted)}{int(batch)}-{start}-{end}",
        is_deleted=deleted,
        batch_pending_selection=batch,
        start_date=_POSITIONS[start],
        end_date=_POSITIONS[end],
    )


def _expected_lifecycle(deleted, batch, start, end):
    if deleted:
        return OfferLifecycle.DELETED
    if batch:
        return OfferLifecycle.BATCH_PENDING
    if start in ("missing", "malformed") or end in ("missing", "malformed"):
        return OfferLifecycle.DRAFT
    if end == "past":
        return OfferLifecycle.EXPIRED
    if start == "future":
        return OfferLifecycle.FUTURE
    return OfferLifecycle.ACTIVE


@pytest.mark.parametrize("deleted,batch,start,end", _COMBINATIONS)
def test_every_combination_lands_in_exactly_one_partition(deleted, batch, start, end):
    offer = _combination_offer(deleted, batch, start, end)
    result = categorize_offers([offer], [], NOW)

    holding = [p.lifecycle for p in result.partitions() if offer in p.offers]
    assert holding == [_expected_lifecycle(deleted, batch, start, end)]
    assert classify_offer(offer, NOW) == holding[0]


def test_all_combinations_together_partition_cleanly():
    offers = [_combination_offer(*combo) for combo in _COMBINATIONS]
    result = categorize_offers(offers, [], NOW)

    seen = [o.id for p in result.partitions() for o in p.offers]
    assert len(seen) == len(set(seen)) == len(offers)
    assert set(seen) == {o.id for o in offers}


def test_folder_grouping_accounts_for_every_offer():
    result = categorize_offers(_mixed_offers(), _folders(), NOW)
    for partition in result.partitions():
        grouped = sum(len(v) for v in partition.by_folder.values())
        assert grouped + len(partition.without_folder) == len(partition)


def test_folder_visibility_by_status():
    result = categorize_offers(_mixed_offers(), _folders(), NOW)

    assert [f.id for f in result.draft.folders] == ["fd"]
    for partition in (result.active, result.future, result.expired):
        assert [f.id for f in partition.folders] == ["fc"]
    # Deleted and batch partitions only expose folders holding their offers.
    assert [f.id for f in result.deleted.folders] == ["fd"]
    assert [f.id for f in result.batch_pending.folders] == ["fd"]


def test_stage1_is_batch_then_draft():
    result = categorize_offers(_mixed_offers(), _folders(), NOW)
    assert [o.id for o in result.stage1] == ["batch", "draft1", "draft2"]


def test_group_by_folder():
    by_folder, without = group_by_folder([
        make_offer("a", campaign_folder="f1"),
        make_offer("b", campaign_folder="f1"),
        make_offer("c"),
    ])
    assert {k: [o.id for o in v] for k, v in by_folder.items()} == {"f1": ["a", "b"]}
    assert [o.id for o in without] == ["c"]


def test_status_divergence_reported_but_not_applied():
    offers = [
        _live("stale", status=OfferStatus.EXPIRED),
        _live("lagging", status=OfferStatus.DRAFT),
        make_offer("gone", is_deleted=True, status=OfferStatus.ACTIVE),
    ]
    divergences = find_status_divergences(offers, NOW)

    assert [(d.offer_id, d.stored, d.computed) for d in divergences] == [
        ("stale", OfferStatus.EXPIRED, OfferLifecycle.ACTIVE),
    ]
    assert classify_offer(offers[0], NOW) == OfferLifecycle.ACTIVE


def test_reconcile_status_flags_only_incompatible_caches():
    assert reconcile_status(_live("ok", status=OfferStatus.ACTIVE), NOW) is None
    assert reconcile_status(make_offer("unset"), NOW) is None

    stale = make_offer("stale", start_date=NOW - 2 * HOUR, end_date=NOW - HOUR, status=OfferStatus.DRAFT)
    divergence = reconcile_status(stale, NOW)
    assert divergence.stored == OfferStatus.DRAFT
    assert divergence.computed == OfferLifecycle.EXPIRED


def test_coerce_timestamp_inputs():
    assert coerce_timestamp("2025-06-01T12:00:00Z") == NOW
    assert coerce_timestamp(NOW) is NOW
    assert coerce_timestamp("   ") is None
    assert coerce_timestamp("06/01/2025") is None
    assert coerce_timestamp(1717243200) is None
