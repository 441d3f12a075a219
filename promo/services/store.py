# promo/services/store.py
"""
SQL-backed storage collaborator for the offer engines.

Reads rows with ``text()`` statements, converts them into the plain records
from ``promo.services.records`` and writes partial offer updates back one
offer at a time. Every public method is scoped to a merchant except the
sweep candidate query, which the lifecycle worker runs across all merchants.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Set

from sqlalchemy import text
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promo.core.config import settings
from promo.core.logging import get_structlog_logger
from promo.db.base import new_id
from promo.services.batch_updates import BatchUpdateResult, OfferUpdateError, OfferWriteGate, apply_offer_updates
from promo.services.folders import (
    FolderStateError,
    PromotionRequest,
    ensure_folder_editable,
    lock_folder,
    promote_folder,
    resolve_promotion_target,
)
from promo.services.records import (
    AccountBalances,
    FolderRecord,
    MembershipTier,
    MerchantAccount,
    OfferRecord,
    coerce_enum,
    coerce_money,
)

logger = get_structlog_logger(__name__)

# Columns an offer update may touch.
UPDATABLE_COLUMNS = frozenset({
    "title",
    "start_date",
    "end_date",
    "status",
    "activated_at",
    "last_auto_extended_at",
    "is_deleted",
    "batch_pending_selection",
    "campaign_folder",
    "max_clicks_allowed",
    "click_budget_dollars",
    "text_budget_dollars",
    "rips_budget_dollars",
    "notify_at_maximum",
    "notify_on_target_met",
    "notify_on_poor_performance",
    "notify_on_shortfall",
    "coupon_delivery_method",
    "add_type",
    "offer_type",
    "image_url",
    "video_url",
    "get_new_customers_enabled",
    "auto_extend",
    "extension_days",
    "target_units",
})

_OFFER_COLUMNS_SQL = """
    id, merchant_id, title, start_date, end_date, is_deleted,
    batch_pending_selection, campaign_folder, max_clicks_allowed,
    click_budget_dollars, text_budget_dollars, rips_budget_dollars,
    notify_at_maximum, notify_on_target_met, notify_on_poor_performance,
    notify_on_shortfall, offer_type, status, last_auto_extended_at,
    activated_at, coupon_delivery_method, add_type, image_url, video_url,
    get_new_customers_enabled, auto_extend, extension_days, target_units,
    units_sold, clicks, redemptions
"""

_SQL_OFFERS_BY_MERCHANT = text(f"""
    SELECT {_OFFER_COLUMNS_SQL}
    FROM offers
    WHERE merchant_id = :merchant_id
    ORDER BY created_at, id
""")

_SQL_SWEEP_CANDIDATES = text(f"""
    SELECT {_OFFER_COLUMNS_SQL}
    FROM offers
    WHERE is_deleted = false
      AND batch_pending_selection = false
      AND start_date IS NOT NULL
      AND end_date IS NOT NULL
      AND (status IS NULL OR status <> 'expired')
    ORDER BY merchant_id, end_date
""")

_SQL_OFFER_FOLDER = text("""
    SELECT campaign_folder
    FROM offers
    WHERE id = :offer_id AND merchant_id = :merchant_id
    FOR UPDATE
""")

_SQL_FOLDERS_BY_MERCHANT = text("""
    SELECT id, name, status, is_locked, merchant_id, campaign_id, metrics_snapshot
    FROM campaign_folders
    WHERE merchant_id = :merchant_id
    ORDER BY created_at, id
""")

_SQL_FOLDER_BY_ID = text("""
    SELECT id, name, status, is_locked, merchant_id, campaign_id, metrics_snapshot
    FROM campaign_folders
    WHERE id = :folder_id AND merchant_id = :merchant_id
""")

_SQL_CAMPAIGN_IDS = text("""
    SELECT id FROM campaigns WHERE merchant_id = :merchant_id
""")

_SQL_ACCOUNT = text("""
    SELECT id, membership_tier, merchant_text_budget, merchant_rips_budget,
           merchant_bank, monthly_texts_used, lifetime_texts_sent
    FROM merchant_accounts
    WHERE id = :merchant_id
""")

_SQL_INSERT_CAMPAIGN = text("""
    INSERT INTO campaigns (id, merchant_id, name, status, created_at, updated_at)
    VALUES (:id, :merchant_id, :name, 'active', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
""")

_SQL_PROMOTE_FOLDER = text("""
    UPDATE campaign_folders
    SET status = 'campaign',
        campaign_id = :campaign_id,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = :folder_id AND merchant_id = :merchant_id AND status = 'draft'
    RETURNING id
""")

_SQL_INSERT_MEMBERSHIP = text("""
    INSERT INTO campaign_folder_memberships (id, campaign_id, folder_id, created_at, updated_at)
    VALUES (:id, :campaign_id, :folder_id, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT ON CONSTRAINT uq_campaign_folder_membership DO NOTHING
""")

_SQL_LOCK_FOLDER = text("""
    UPDATE campaign_folders
    SET is_locked = true,
        metrics_snapshot = CAST(:snapshot AS JSONB),
        updated_at = CURRENT_TIMESTAMP
    WHERE id = :folder_id AND merchant_id = :merchant_id AND is_locked = false
    RETURNING id
""")


class OfferStore:
    """
    Offer, folder and account access for one database session.

    ``enforce_locks`` guards offer edits against locked campaign folders.
    The lifecycle worker turns it off: status bookkeeping is not an edit.
    """

    def __init__(self, session: AsyncSession, enforce_locks: bool = True):
        self.session = session
        self.enforce_locks = enforce_locks

    # ---- reads ---------------------------------------------------------

    async def list_offers(self, merchant_id: str) -> List[OfferRecord]:
        res = await self.session.execute(_SQL_OFFERS_BY_MERCHANT, {"merchant_id": merchant_id})
        return [OfferRecord.from_row(row) for row in res.mappings().all()]

    async def list_sweep_candidates(self) -> List[OfferRecord]:
        res = await self.session.execute(_SQL_SWEEP_CANDIDATES)
        return [OfferRecord.from_row(row) for row in res.mappings().all()]

    async def list_folders(self, merchant_id: str) -> List[FolderRecord]:
        res = await self.session.execute(_SQL_FOLDERS_BY_MERCHANT, {"merchant_id": merchant_id})
        return [FolderRecord.from_row(row) for row in res.mappings().all()]

    async def get_folder(self, merchant_id: str, folder_id: str) -> Optional[FolderRecord]:
        res = await self.session.execute(
            _SQL_FOLDER_BY_ID, {"merchant_id": merchant_id, "folder_id": folder_id}
        )
        row = res.mappings().first()
        return FolderRecord.from_row(row) if row else None

    async def list_campaign_ids(self, merchant_id: str) -> Set[str]:
        res = await self.session.execute(_SQL_CAMPAIGN_IDS, {"merchant_id": merchant_id})
        return {str(r[0]) for r in res.fetchall()}

    async def get_account(self, merchant_id: str) -> Optional[MerchantAccount]:
        res = await self.session.execute(_SQL_ACCOUNT, {"merchant_id": merchant_id})
        row = res.mappings().first()
        if not row:
            return None
        return MerchantAccount(
            merchant_id=str(row["id"]),
            tier=(
                coerce_enum(MembershipTier, row["membership_tier"])
                or MembershipTier(settings.default_membership_tier)
            ),
            balances=AccountBalances(
                text_budget=coerce_money(row["merchant_text_budget"]),
                rips_budget=coerce_money(row["merchant_rips_budget"]),
                bank=coerce_money(row["merchant_bank"]),
            ),
            monthly_texts_used=int(row["monthly_texts_used"] or 0),
            lifetime_texts_sent=int(row["lifetime_texts_sent"] or 0),
        )

    # ---- offer writes --------------------------------------------------

    async def update_offer(self, merchant_id: str, offer_id: str, changes: Mapping[str, Any]) -> bool:
        """
        Apply one partial update inside a savepoint.

        Returns False when the merchant has no such offer. Raises
        OfferUpdateError for rejected columns or values and FolderStateError
        when the offer sits in (or is being moved into) a locked folder.
        """
        unknown = sorted(set(changes) - UPDATABLE_COLUMNS)
        if unknown:
            raise OfferUpdateError(
                code="unknown_column",
                message=f"Offer columns cannot be updated: {', '.join(unknown)}",
                details={"offer_id": offer_id, "columns": unknown},
            )
        if not changes:
            return True

        try:
            async with self.session.begin_nested():
                res = await self.session.execute(
                    _SQL_OFFER_FOLDER, {"offer_id": offer_id, "merchant_id": merchant_id}
                )
                row = res.mappings().first()
                if row is None:
                    return False

                if self.enforce_locks:
                    folder_ids = {row["campaign_folder"], changes.get("campaign_folder")}
                    for folder_id in folder_ids - {None}:
                        ensure_folder_editable(await self.get_folder(merchant_id, folder_id))

                columns = sorted(changes)
                assignments = ", ".join(f"{c} = :{c}" for c in columns)
                params = {c: changes[c] for c in columns}
                params.update({"offer_id": offer_id, "merchant_id": merchant_id})
                await self.session.execute(
                    text(f"""
                        UPDATE offers
                        SET {assignments}, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :offer_id AND merchant_id = :merchant_id
                    """),
                    params,
                )
        except (IntegrityError, DataError) as e:
            raise OfferUpdateError(
                code="update_rejected",
                message="Database rejected the offer update",
                details={"offer_id": offer_id, "error": str(e.orig)},
            ) from e
        return True

    async def apply_updates(
        self,
        merchant_id: str,
        updates: Mapping[str, Mapping[str, Any]],
        gate: Optional[OfferWriteGate] = None,
    ) -> BatchUpdateResult:
        """Apply a batch of partial updates and commit whatever succeeded."""
        result = await apply_offer_updates(self, merchant_id, updates, gate=gate)
        await self.session.commit()
        return result

    # ---- folder writes -------------------------------------------------

    async def promote_folder(self, merchant_id: str, request: PromotionRequest) -> FolderRecord:
        folder = await self.get_folder(merchant_id, request.folder_id)
        if folder is None:
            raise FolderStateError(
                code="folder_not_found",
                message="Folder not found",
                details={"folder_id": request.folder_id},
            )

        target = resolve_promotion_target(request, await self.list_campaign_ids(merchant_id))
        campaign_id = target.campaign_id or new_id()
        promoted = promote_folder(folder, campaign_id)

        try:
            if target.new_campaign_name is not None:
                await self.session.execute(
                    _SQL_INSERT_CAMPAIGN,
                    {"id": campaign_id, "merchant_id": merchant_id, "name": target.new_campaign_name},
                )
                logger.info(
                    "campaign.created",
                    merchant_id=merchant_id,
                    campaign_id=campaign_id,
                    name=target.new_campaign_name,
                )

            res = await self.session.execute(
                _SQL_PROMOTE_FOLDER,
                {"folder_id": folder.id, "merchant_id": merchant_id, "campaign_id": campaign_id},
            )
            if res.first() is None:
                # Promoted concurrently.
                await self.session.rollback()
                raise FolderStateError(
                    code="invalid_transition",
                    message="Folder is no longer a draft and cannot be promoted",
                    details={"folder_id": folder.id},
                )
            await self.session.execute(
                _SQL_INSERT_MEMBERSHIP,
                {"id": new_id(), "campaign_id": campaign_id, "folder_id": folder.id},
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise FolderStateError(
                code="promotion_conflict",
                message="Folder promotion conflicted with existing data",
                details={"folder_id": folder.id, "campaign_id": campaign_id},
            ) from e

        return promoted

    async def lock_folder(self, merchant_id: str, folder_id: str) -> FolderRecord:
        folder = await self.get_folder(merchant_id, folder_id)
        if folder is None:
            raise FolderStateError(
                code="folder_not_found",
                message="Folder not found",
                details={"folder_id": folder_id},
            )
        locked = lock_folder(folder, await self.list_offers(merchant_id))

        res = await self.session.execute(
            _SQL_LOCK_FOLDER,
            {
                "folder_id": folder_id,
                "merchant_id": merchant_id,
                "snapshot": json.dumps(locked.metrics_snapshot.to_dict()),
            },
        )
        if res.first() is None:
            await self.session.rollback()
            raise FolderStateError(
                code="folder_already_locked",
                message="Folder is already locked",
                details={"folder_id": folder_id},
            )
        await self.session.commit()
        return locked


def group_by_merchant(
    updates: Mapping[str, Mapping[str, Any]],
    offers: Mapping[str, OfferRecord],
) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Split offer-keyed updates into one batch per merchant."""
    grouped: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for offer_id, changes in updates.items():
        offer = offers.get(offer_id)
        if offer is None or not offer.merchant_id:
            continue
        grouped.setdefault(str(offer.merchant_id), {}).setdefault(offer_id, {}).update(changes)
    return grouped
