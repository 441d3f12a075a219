# tests/test_store.py
import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from promo.services.batch_updates import OfferUpdateError, OfferWriteGate
from promo.services.folders import FolderStateError, PromotionRequest
from promo.services.records import FolderStatus, MembershipTier, OfferType
from promo.services.store import OfferStore, group_by_merchant

from support import NOW, make_offer


class _Mappings:
    def __init__(self, rows):
        self._rows = rows

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None


class _Result:
    def __init__(self, rows=()):
        self._rows = list(rows)

    def mappings(self):
        return _Mappings(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return [tuple(r.values()) for r in self._rows]


class _Savepoint:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        self.session.savepoints += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.session.savepoint_rollbacks += 1
        return False


class _Session:
    """Routes each statement to a handler keyed by a fragment of its SQL."""

    def __init__(self, handlers):
        self.handlers = handlers
        self.statements = []
        self.savepoints = 0
        self.savepoint_rollbacks = 0
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, stmt, params=None):
        sql = " ".join(str(stmt).split())
        self.statements.append((sql, params or {}))
        for fragment, handler in self.handlers.items():
            if fragment in sql:
                out = handler(params or {})
                if isinstance(out, Exception):
                    raise out
                return _Result(out)
        raise AssertionError(f"unexpected query: {sql}")

    def begin_nested(self):
        return _Savepoint(self)

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


def _offer_row(**kw):
    row = {
        "id": "o1",
        "merchant_id": "m1",
        "title": "Half off",
        "offer_type": "percentage",
        "status": "active",
        "click_budget_dollars": Decimal("12.50"),
        "is_deleted": False,
        "campaign_folder": None,
    }
    row.update(kw)
    return row


def _folder_row(**kw):
    row = {
        "id": "f1",
        "name": "Spring",
        "status": "draft",
        "is_locked": False,
        "merchant_id": "m1",
        "campaign_id": None,
        "metrics_snapshot": None,
    }
    row.update(kw)
    return row


def test_list_offers_converts_rows():
    session = _Session({"FROM offers WHERE merchant_id": lambda p: [_offer_row()]})
    offers = asyncio.run(OfferStore(session).list_offers("m1"))
    assert len(offers) == 1
    assert offers[0].offer_type == OfferType.PERCENTAGE
    assert offers[0].click_budget_dollars == Decimal("12.50")
    assert session.statements[0][1] == {"merchant_id": "m1"}


def test_get_account_maps_balances():
    session = _Session({
        "FROM merchant_accounts": lambda p: [{
            "id": "m1",
            "membership_tier": "GLIDE",
            "merchant_text_budget": Decimal("50"),
            "merchant_rips_budget": None,
            "merchant_bank": "100.25",
            "monthly_texts_used": 7,
            "lifetime_texts_sent": None,
        }],
    })
    account = asyncio.run(OfferStore(session).get_account("m1"))
    assert account.tier == MembershipTier.GLIDE
    assert account.balances.text_budget == Decimal("50")
    assert account.balances.rips_budget == Decimal("0")
    assert account.balances.bank == Decimal("100.25")
    assert account.lifetime_texts_sent == 0


def test_get_account_missing():
    session = _Session({"FROM merchant_accounts": lambda p: []})
    assert asyncio.run(OfferStore(session).get_account("m1")) is None


def test_update_rejects_unknown_columns_before_touching_db():
    session = _Session({})
    with pytest.raises(OfferUpdateError) as exc_info:
        asyncio.run(OfferStore(session).update_offer("m1", "o1", {"merchant_id": "m2"}))
    assert exc_info.value.code == "unknown_column"
    assert session.statements == []


def test_update_missing_offer_returns_false():
    session = _Session({"SELECT campaign_folder FROM offers": lambda p: []})
    assert asyncio.run(OfferStore(session).update_offer("m1", "o1", {"title": "x"})) is False


def test_update_writes_only_given_columns():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": None}],
        "UPDATE offers": lambda p: [],
    })
    found = asyncio.run(OfferStore(session).update_offer("m1", "o1", {"max_clicks_allowed": 15, "title": "New"}))
    assert found is True
    sql, params = session.statements[-1]
    assert "SET max_clicks_allowed = :max_clicks_allowed, title = :title" in sql
    assert params == {"max_clicks_allowed": 15, "title": "New", "offer_id": "o1", "merchant_id": "m1"}
    assert session.savepoints == 1


def test_update_blocked_by_locked_folder():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": "f1"}],
        "FROM campaign_folders WHERE id": lambda p: [_folder_row(status="campaign", is_locked=True)],
        "UPDATE offers": lambda p: [],
    })
    with pytest.raises(FolderStateError) as exc_info:
        asyncio.run(OfferStore(session).update_offer("m1", "o1", {"title": "x"}))
    assert exc_info.value.code == "folder_locked"
    assert session.savepoint_rollbacks == 1
    assert not any(sql.startswith("UPDATE offers") for sql, _ in session.statements)


def test_sweep_store_ignores_folder_locks():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": "f1"}],
        "UPDATE offers": lambda p: [],
    })
    store = OfferStore(session, enforce_locks=False)
    assert asyncio.run(store.update_offer("m1", "o1", {"status": "expired"})) is True


def test_integrity_errors_become_update_errors():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": None}],
        "UPDATE offers": lambda p: IntegrityError("UPDATE offers", {}, Exception("fk violation")),
    })
    with pytest.raises(OfferUpdateError) as exc_info:
        asyncio.run(OfferStore(session).update_offer("m1", "o1", {"campaign_folder": None}))
    assert exc_info.value.code == "update_rejected"


def test_apply_updates_commits_and_reports():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": None}] if p["offer_id"] == "o1" else [],
        "UPDATE offers": lambda p: [],
    })
    result = asyncio.run(OfferStore(session).apply_updates("m1", {"o1": {"title": "a"}, "o2": {"title": "b"}}))
    assert result.succeeded == ("o1",)
    assert result.failed == {"o2": "offer_not_found"}
    assert session.commits == 1


def test_gated_updates_never_reach_the_database():
    session = _Session({
        "SELECT campaign_folder FROM offers": lambda p: [{"campaign_folder": None}],
        "UPDATE offers": lambda p: [],
    })
    live = make_offer("o1", start_date=NOW - timedelta(hours=1), end_date=NOW + timedelta(hours=1))
    gate = OfferWriteGate(MembershipTier.NEST, [live], NOW)

    result = asyncio.run(OfferStore(session).apply_updates("m1", {"o1": {"auto_extend": True}}, gate=gate))

    assert result.failed == {"o1": "tier_violation"}
    assert not any(sql.startswith("UPDATE offers") for sql, _ in session.statements)
    assert session.commits == 1


def test_promote_folder_with_new_campaign():
    session = _Session({
        "FROM campaign_folders WHERE id": lambda p: [_folder_row()],
        "SELECT id FROM campaigns": lambda p: [],
        "INSERT INTO campaigns": lambda p: [],
        "UPDATE campaign_folders SET status = 'campaign'": lambda p: [{"id": "f1"}],
        "INSERT INTO campaign_folder_memberships": lambda p: [],
    })
    folder = asyncio.run(OfferStore(session).promote_folder(
        "m1", PromotionRequest(folder_id="f1", campaign_name="Holiday")
    ))
    assert folder.status == FolderStatus.CAMPAIGN
    inserted = next(p for sql, p in session.statements if sql.startswith("INSERT INTO campaigns"))
    assert inserted["name"] == "Holiday"
    assert inserted["id"] == folder.campaign_id
    assert session.commits == 1


def test_promote_folder_already_promoted():
    session = _Session({
        "FROM campaign_folders WHERE id": lambda p: [_folder_row(status="campaign", campaign_id="c1")],
        "SELECT id FROM campaigns": lambda p: [{"id": "c1"}],
    })
    with pytest.raises(FolderStateError) as exc_info:
        asyncio.run(OfferStore(session).promote_folder("m1", PromotionRequest(folder_id="f1", campaign_id="c1")))
    assert exc_info.value.code == "invalid_transition"
    assert session.commits == 0


def test_promote_missing_folder():
    session = _Session({"FROM campaign_folders WHERE id": lambda p: []})
    with pytest.raises(FolderStateError) as exc_info:
        asyncio.run(OfferStore(session).promote_folder("m1", PromotionRequest(folder_id="f9", campaign_id="c1")))
    assert exc_info.value.code == "folder_not_found"


def test_lock_folder_stores_snapshot():
    session = _Session({
        "FROM campaign_folders WHERE id": lambda p: [_folder_row(status="campaign", campaign_id="c1")],
        "FROM offers WHERE merchant_id": lambda p: [
            _offer_row(id="o1", campaign_folder="f1", clicks=10, redemptions=5),
        ],
        "UPDATE campaign_folders SET is_locked = true": lambda p: [{"id": "f1"}],
    })
    folder = asyncio.run(OfferStore(session).lock_folder("m1", "f1"))
    assert folder.is_locked
    _, params = session.statements[-1]
    assert json.loads(params["snapshot"])["redemptions"] == 5
    assert session.commits == 1


def test_group_by_merchant():
    offers = {"a": make_offer("a", merchant_id="m1"), "b": make_offer("b", merchant_id="m2")}
    grouped = group_by_merchant({"a": {"status": "active"}, "b": {"status": "expired"}, "z": {}}, offers)
    assert grouped == {"m1": {"a": {"status": "active"}}, "m2": {"b": {"status": "expired"}}}


def test_account_without_tier_gets_default():
    session = _Session({
        "FROM merchant_accounts": lambda p: [{
            "id": "m1",
            "membership_tier": None,
            "merchant_text_budget": None,
            "merchant_rips_budget": None,
            "merchant_bank": None,
            "monthly_texts_used": None,
            "lifetime_texts_sent": None,
        }],
    })
    account = asyncio.run(OfferStore(session).get_account("m1"))
    assert account.tier == MembershipTier.NEST
    assert account.balances.bank == Decimal("0")
