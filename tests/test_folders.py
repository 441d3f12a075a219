# tests/test_folders.py
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from promo.services.folders import (
    FolderStateError,
    PromotionRequest,
    aggregate_metrics,
    ensure_folder_editable,
    folder_metrics,
    lock_folder,
    promote_folder,
    resolve_promotion_target,
)
from promo.services.lifecycle import categorize_offers
from promo.services.records import FolderStatus

from support import NOW, MemoryStore, make_folder, make_offer


def test_target_requires_id_or_name():
    with pytest.raises(FolderStateError) as exc_info:
        resolve_promotion_target(PromotionRequest(folder_id="f1", campaign_name="   "), set())
    assert exc_info.value.code == "campaign_target_required"


def test_target_rejects_both_id_and_name():
    with pytest.raises(FolderStateError) as exc_info:
        resolve_promotion_target(PromotionRequest(folder_id="f1", campaign_id="c1", campaign_name="Spring"), {"c1"})
    assert exc_info.value.code == "ambiguous_campaign_target"


def test_target_id_must_exist():
    with pytest.raises(FolderStateError) as exc_info:
        resolve_promotion_target(PromotionRequest(folder_id="f1", campaign_id="nope"), {"c1"})
    assert exc_info.value.code == "unknown_campaign"


def test_target_new_campaign_name_is_trimmed():
    target = resolve_promotion_target(PromotionRequest(folder_id="f1", campaign_name=" Spring Sale "), set())
    assert target.new_campaign_name == "Spring Sale"
    assert target.campaign_id is None


def test_promote_is_one_way():
    promoted = promote_folder(make_folder("f1"), "c1")
    assert promoted.status == FolderStatus.CAMPAIGN
    assert promoted.campaign_id == "c1"

    with pytest.raises(FolderStateError) as exc_info:
        promote_folder(promoted, "c2")
    assert exc_info.value.code == "invalid_transition"


def test_promotion_moves_folder_out_of_draft_view():
    offers = [make_offer("o1", campaign_folder="f1")]
    store = MemoryStore(offers=offers, folders=[make_folder("f1")], campaigns=[("c1", "m1")])

    before = categorize_offers(offers, asyncio.run(store.list_folders("m1")), NOW)
    assert [f.id for f in before.draft.folders] == ["f1"]
    assert before.active.folders == ()

    asyncio.run(store.promote_folder("m1", PromotionRequest(folder_id="f1", campaign_id="c1")))

    after = categorize_offers(offers, asyncio.run(store.list_folders("m1")), NOW)
    assert after.draft.folders == ()
    assert [f.id for f in after.active.folders] == ["f1"]
    assert [f.id for f in after.expired.folders] == ["f1"]


def test_promotion_with_new_campaign_name_creates_campaign():
    store = MemoryStore(folders=[make_folder("f1")])
    promoted = asyncio.run(store.promote_folder("m1", PromotionRequest(folder_id="f1", campaign_name="Holiday")))
    assert promoted.campaign_id in asyncio.run(store.list_campaign_ids("m1"))


def test_lock_requires_promotion():
    with pytest.raises(FolderStateError) as exc_info:
        lock_folder(make_folder("f1"), [])
    assert exc_info.value.code == "folder_not_promoted"


def test_lock_freezes_metrics():
    folder = make_folder("f1", status=FolderStatus.CAMPAIGN, campaign_id="c1")
    offers = [
        make_offer("a", campaign_folder="f1", clicks=10, redemptions=2, max_clicks_allowed=50,
                   click_budget_dollars=Decimal("5.00")),
        make_offer("b", campaign_folder="f1", clicks=30, redemptions=6, max_clicks_allowed=50),
        make_offer("gone", campaign_folder="f1", is_deleted=True, clicks=999),
        make_offer("other", campaign_folder="f2", clicks=999),
    ]
    locked = lock_folder(folder, offers)
    assert locked.is_locked
    snapshot = locked.metrics_snapshot
    assert snapshot.offer_count == 2
    assert snapshot.clicks == 40
    assert snapshot.redemptions == 8
    assert snapshot.total_max_clicks == 100
    assert snapshot.conversion_rate == pytest.approx(0.2)

    # Later activity on the offers does not change what a locked folder reports.
    busier = [make_offer("a", campaign_folder="f1", clicks=500, redemptions=100)]
    assert folder_metrics(locked, busier) == snapshot

    with pytest.raises(FolderStateError) as exc_info:
        lock_folder(locked, offers)
    assert exc_info.value.code == "folder_already_locked"


def test_unlocked_metrics_are_live():
    folder = make_folder("f1", status=FolderStatus.CAMPAIGN)
    metrics = folder_metrics(folder, [make_offer("a", campaign_folder="f1", clicks=4, redemptions=1)])
    assert metrics.clicks == 4
    assert metrics.conversion_rate == pytest.approx(0.25)


def test_conversion_rate_undefined_without_clicks():
    assert aggregate_metrics([]).conversion_rate is None


def test_locked_folder_refuses_edits():
    ensure_folder_editable(None)
    ensure_folder_editable(make_folder("f1"))
    locked = make_folder("f1", status=FolderStatus.CAMPAIGN, is_locked=True)
    with pytest.raises(FolderStateError) as exc_info:
        ensure_folder_editable(locked)
    assert exc_info.value.code == "folder_locked"


def test_offers_in_locked_folder_reject_store_updates():
    folder = make_folder("f1", status=FolderStatus.CAMPAIGN, is_locked=True)
    store = MemoryStore(
        offers=[make_offer("a", campaign_folder="f1", start_date=NOW, end_date=NOW + timedelta(days=1))],
        folders=[folder],
    )
    result = asyncio.run(store.apply_updates("m1", {"a": {"max_clicks_allowed": 5}}))
    assert result.failed == {"a": "folder_locked"}
