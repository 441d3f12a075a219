# promo/services/folders.py
"""
Campaign folder state machine.

Folders start as drafts, are promoted once into a campaign (existing or
new) and may then be locked, which freezes a metrics snapshot and blocks
edits to the offers inside.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Collection, Dict, Iterable, Optional

from promo.core.logging import get_structlog_logger
from promo.services.records import FolderMetrics, FolderRecord, FolderStatus, OfferRecord

logger = get_structlog_logger(__name__)


class FolderStateError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


@dataclass(frozen=True)
class PromotionRequest:
    folder_id: str
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None


@dataclass(frozen=True)
class PromotionTarget:
    """Exactly one of the fields is set."""
    campaign_id: Optional[str] = None
    new_campaign_name: Optional[str] = None


def resolve_promotion_target(
    request: PromotionRequest,
    existing_campaign_ids: Collection[str],
) -> PromotionTarget:
    """
    Decide where a folder is being promoted to.

    Either an existing campaign id or a new (non-blank) campaign name must be
    given, never both. An id must name one of the merchant's campaigns.
    """
    campaign_id = (request.campaign_id or "").strip() or None
    name = (request.campaign_name or "").strip() or None

    if campaign_id is None and name is None:
        raise FolderStateError(
            code="campaign_target_required",
            message="Either campaign ID or campaign name is required",
            details={"folder_id": request.folder_id},
        )
    if campaign_id is not None and name is not None:
        raise FolderStateError(
            code="ambiguous_campaign_target",
            message="Provide either campaign ID or campaign name, not both",
            details={"folder_id": request.folder_id},
        )
    if campaign_id is not None:
        if campaign_id not in existing_campaign_ids:
            raise FolderStateError(
                code="unknown_campaign",
                message="Campaign not found",
                details={"folder_id": request.folder_id, "campaign_id": campaign_id},
            )
        return PromotionTarget(campaign_id=campaign_id)
    return PromotionTarget(new_campaign_name=name)


def promote_folder(folder: FolderRecord, campaign_id: str) -> FolderRecord:
    """draft -> campaign. There is no way back."""
    if folder.status != FolderStatus.DRAFT:
        raise FolderStateError(
            code="invalid_transition",
            message=f"Folder is already in status '{folder.status.value}' and cannot be promoted",
            details={"folder_id": folder.id, "status": folder.status.value},
        )
    if not campaign_id:
        raise FolderStateError(
            code="campaign_target_required",
            message="A campaign is required to promote a folder",
            details={"folder_id": folder.id},
        )
    logger.info("folder.promoted", folder_id=folder.id, campaign_id=campaign_id)
    return replace(folder, status=FolderStatus.CAMPAIGN, campaign_id=campaign_id)


def aggregate_metrics(offers: Iterable[OfferRecord]) -> FolderMetrics:
    count = 0
    max_clicks = 0
    click_dollars = Decimal("0")
    text_dollars = Decimal("0")
    rips_dollars = Decimal("0")
    clicks = 0
    redemptions = 0
    for offer in offers:
        count += 1
        max_clicks += offer.max_clicks_allowed
        click_dollars += offer.click_budget_dollars
        text_dollars += offer.text_budget_dollars
        rips_dollars += offer.rips_budget_dollars
        clicks += offer.clicks
        redemptions += offer.redemptions
    return FolderMetrics(
        offer_count=count,
        total_max_clicks=max_clicks,
        click_budget_dollars=click_dollars,
        text_budget_dollars=text_dollars,
        rips_budget_dollars=rips_dollars,
        clicks=clicks,
        redemptions=redemptions,
    )


def _folder_offers(folder: FolderRecord, offers: Iterable[OfferRecord]) -> Iterable[OfferRecord]:
    return (o for o in offers if o.campaign_folder == folder.id and not o.is_deleted)


def folder_metrics(folder: FolderRecord, offers: Iterable[OfferRecord]) -> FolderMetrics:
    """
    Performance numbers for a folder.

    Locked folders return the snapshot frozen at lock time and ignore the
    live offers entirely.
    """
    if folder.is_locked:
        if folder.metrics_snapshot is None:
            raise FolderStateError(
                code="snapshot_missing",
                message="Locked folder has no metrics snapshot",
                details={"folder_id": folder.id},
            )
        return folder.metrics_snapshot
    return aggregate_metrics(_folder_offers(folder, offers))


def lock_folder(folder: FolderRecord, offers: Iterable[OfferRecord]) -> FolderRecord:
    if folder.status != FolderStatus.CAMPAIGN:
        raise FolderStateError(
            code="folder_not_promoted",
            message="Only promoted campaign folders can be locked",
            details={"folder_id": folder.id, "status": folder.status.value},
        )
    if folder.is_locked:
        raise FolderStateError(
            code="folder_already_locked",
            message="Folder is already locked",
            details={"folder_id": folder.id},
        )
    snapshot = aggregate_metrics(_folder_offers(folder, offers))
    logger.info("folder.locked", folder_id=folder.id, offer_count=snapshot.offer_count)
    return replace(folder, is_locked=True, metrics_snapshot=snapshot)


def ensure_folder_editable(folder: Optional[FolderRecord]) -> None:
    if folder is not None and folder.is_locked:
        raise FolderStateError(
            code="folder_locked",
            message=(
                "This offer cannot be edited because it's in a locked campaign. "
                "Campaign data is frozen to keep its reporting intact."
            ),
            details={"folder_id": folder.id},
        )
