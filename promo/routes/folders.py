# promo/routes/folders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from promo.core.logging import get_structlog_logger
from promo.routes.deps import error_detail, get_merchant_id, get_store
from promo.schemas.folders import FolderMetricsOut, FolderOut, PromoteFolderRequest
from promo.services.folders import FolderStateError, PromotionRequest, folder_metrics
from promo.services.store import OfferStore
from promo.services.tier_gate import can_access, minimum_tier_for, upgrade_message

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/folders", tags=["folders"])

_STATUS_BY_CODE = {
    "folder_not_found": status.HTTP_404_NOT_FOUND,
    "unknown_campaign": status.HTTP_404_NOT_FOUND,
    "campaign_target_required": status.HTTP_400_BAD_REQUEST,
    "ambiguous_campaign_target": status.HTTP_400_BAD_REQUEST,
}


def _folder_http_error(e: FolderStateError) -> HTTPException:
    # Everything else is a state conflict.
    code = _STATUS_BY_CODE.get(e.code, status.HTTP_409_CONFLICT)
    return HTTPException(status_code=code, detail=error_detail(e))


@router.post("/{folder_id}/promote", response_model=FolderOut)
async def promote(
    folder_id: str,
    payload: PromoteFolderRequest,
    merchant_id: str = Depends(get_merchant_id),
    store: OfferStore = Depends(get_store),
) -> FolderOut:
    account = await store.get_account(merchant_id)
    if account is not None and not can_access(account.tier, "allow_folders"):
        required = minimum_tier_for("allow_folders")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "tier_violation",
                "message": upgrade_message(required, "folders"),
                "details": {"tier": account.tier.value, "minimum_tier": required.value if required else None},
            },
        )

    request = PromotionRequest(
        folder_id=folder_id,
        campaign_id=payload.campaign_id,
        campaign_name=payload.campaign_name,
    )
    try:
        folder = await store.promote_folder(merchant_id, request)
    except FolderStateError as e:
        logger.warning("folder.promotion_failed", folder_id=folder_id, code=e.code)
        raise _folder_http_error(e)
    return FolderOut.from_record(folder)


@router.post("/{folder_id}/lock", response_model=FolderOut)
async def lock(
    folder_id: str,
    merchant_id: str = Depends(get_merchant_id),
    store: OfferStore = Depends(get_store),
) -> FolderOut:
    try:
        folder = await store.lock_folder(merchant_id, folder_id)
    except FolderStateError as e:
        logger.warning("folder.lock_failed", folder_id=folder_id, code=e.code)
        raise _folder_http_error(e)
    return FolderOut.from_record(folder)


@router.get("/{folder_id}/metrics", response_model=FolderMetricsOut)
async def metrics(
    folder_id: str,
    merchant_id: str = Depends(get_merchant_id),
    store: OfferStore = Depends(get_store),
) -> FolderMetricsOut:
    folder = await store.get_folder(merchant_id, folder_id)
    if folder is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "folder_not_found", "message": "Folder not found", "details": {"folder_id": folder_id}},
        )
    offers = [] if folder.is_locked else await store.list_offers(merchant_id)
    try:
        return FolderMetricsOut.from_metrics(folder_metrics(folder, offers))
    except FolderStateError as e:
        raise _folder_http_error(e)
