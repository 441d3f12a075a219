# tests/support.py
"""Shared builders and an in-memory store for the test suite."""
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal

from promo.db.base import new_id
from promo.services.batch_updates import OfferUpdateError, apply_offer_updates
from promo.services.folders import (
    FolderStateError,
    ensure_folder_editable,
    lock_folder,
    promote_folder,
    resolve_promotion_target,
)
from promo.services.records import (
    AccountBalances,
    FolderRecord,
    FolderStatus,
    MembershipTier,
    MerchantAccount,
    OfferRecord,
)
from promo.services.store import UPDATABLE_COLUMNS

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class MemoryStore:
    """Dict-backed stand-in for OfferStore with the same coroutine interface."""

    def __init__(self, offers=(), folders=(), accounts=(), campaigns=()):
        self.offers = {o.id: o for o in offers}
        self.folders = {f.id: f for f in folders}
        self.accounts = {a.merchant_id: a for a in accounts}
        self.campaigns = {c: m for c, m in campaigns}
        self.commits = 0

    async def list_offers(self, merchant_id):
        return [o for o in self.offers.values() if o.merchant_id == merchant_id]

    async def list_sweep_candidates(self):
        return [o for o in self.offers.values() if not o.is_deleted and not o.batch_pending_selection]

    async def list_folders(self, merchant_id):
        return [f for f in self.folders.values() if f.merchant_id == merchant_id]

    async def get_folder(self, merchant_id, folder_id):
        folder = self.folders.get(folder_id)
        return folder if folder is not None and folder.merchant_id == merchant_id else None

    async def list_campaign_ids(self, merchant_id):
        return {c for c, m in self.campaigns.items() if m == merchant_id}

    async def get_account(self, merchant_id):
        return self.accounts.get(merchant_id)

    async def update_offer(self, merchant_id, offer_id, changes):
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise OfferUpdateError(code="unknown_column", message="bad column")
        offer = self.offers.get(offer_id)
        if offer is None or offer.merchant_id != merchant_id:
            return False
        if offer.campaign_folder:
            ensure_folder_editable(self.folders.get(offer.campaign_folder))
        self.offers[offer_id] = OfferRecord.from_row({**asdict(offer), **changes})
        return True

    async def apply_updates(self, merchant_id, updates, gate=None):
        result = await apply_offer_updates(self, merchant_id, updates, gate=gate)
        self.commits += 1
        return result

    async def promote_folder(self, merchant_id, request):
        folder = await self.get_folder(merchant_id, request.folder_id)
        if folder is None:
            raise FolderStateError(code="folder_not_found", message="Folder not found")
        target = resolve_promotion_target(request, await self.list_campaign_ids(merchant_id))
        campaign_id = target.campaign_id or new_id()
        promoted = promote_folder(folder, campaign_id)
        self.campaigns[campaign_id] = merchant_id
        self.folders[folder.id] = promoted
        return promoted

    async def lock_folder(self, merchant_id, folder_id):
        folder = await self.get_folder(merchant_id, folder_id)
        if folder is None:
            raise FolderStateError(code="folder_not_found", message="Folder not found")
        locked = lock_folder(folder, await self.list_offers(merchant_id))
        self.folders[folder_id] = locked
        return locked


def make_offer(offer_id, **kwargs):
    kwargs.setdefault("merchant_id", "m1")
    return OfferRecord(id=offer_id, **kwargs)


def make_folder(folder_id, status=FolderStatus.DRAFT, **kwargs):
    kwargs.setdefault("merchant_id", "m1")
    kwargs.setdefault("name", folder_id)
    return FolderRecord(id=folder_id, status=status, **kwargs)


def make_account(merchant_id="m1", tier=MembershipTier.SOAR, text="50", rips="50", bank="500"):
    return MerchantAccount(
        merchant_id=merchant_id,
        tier=tier,
        balances=AccountBalances(
            text_budget=Decimal(text),
            rips_budget=Decimal(rips),
            bank=Decimal(bank),
        ),
    )
