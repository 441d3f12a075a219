# promo/routes/offers.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from promo.core.exceptions import BadRequestError
from promo.core.logging import get_structlog_logger
from promo.routes.deps import error_detail, get_account, get_merchant_id, get_now, get_store
from promo.schemas.offers import (
    AllocationRequest,
    AllocationResponse,
    BatchSelectRequest,
    BatchUpdateOut,
    CategorizedOffersResponse,
    OfferOut,
    OfferUpdateRequest,
    PartitionOut,
)
from promo.services.allocation import (
    AllocationError,
    AllocationScope,
    allocation_updates,
    plan_allocation,
    remaining_after_filtered,
)
from promo.services.batch_updates import (
    OfferUpdateError,
    PartialFailureError,
    load_write_gate,
    promote_batch_selection,
    write_offer,
)
from promo.services.lifecycle import categorize_offers, find_status_divergences
from promo.services.records import MerchantAccount
from promo.services.store import OfferStore
from promo.services.tier_gate import TierViolationError

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/offers", tags=["offers"])

_WRITE_STATUS_BY_CODE = {
    "offer_not_found": status.HTTP_404_NOT_FOUND,
    "unknown_column": status.HTTP_400_BAD_REQUEST,
}


@router.get("/categorized", response_model=CategorizedOffersResponse)
async def categorized_offers(
    merchant_id: str = Depends(get_merchant_id),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> CategorizedOffersResponse:
    """All of a merchant's offers split into lifecycle partitions."""
    offers = await store.list_offers(merchant_id)
    folders = await store.list_folders(merchant_id)
    categorized = categorize_offers(offers, folders, now)
    divergences = find_status_divergences(offers, now)

    logger.info(
        "offers.categorized",
        merchant_id=merchant_id,
        counts={p.lifecycle.value: len(p) for p in categorized.partitions()},
    )
    return CategorizedOffersResponse(
        draft=PartitionOut.from_partition(categorized.draft),
        active=PartitionOut.from_partition(categorized.active),
        future=PartitionOut.from_partition(categorized.future),
        expired=PartitionOut.from_partition(categorized.expired),
        deleted=PartitionOut.from_partition(categorized.deleted),
        batch_pending=PartitionOut.from_partition(categorized.batch_pending),
        stage1=[OfferOut.from_record(o) for o in categorized.stage1],
        status_divergences=[d.offer_id for d in divergences],
    )


@router.post("/allocations", response_model=AllocationResponse)
async def allocate(
    payload: AllocationRequest,
    account: MerchantAccount = Depends(get_account),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> AllocationResponse:
    merchant_id = account.merchant_id

    try:
        allocation = plan_allocation(
            offer_ids=payload.offer_ids,
            budget=payload.budget.to_budget_input(),
            divide_evenly=payload.divide_evenly,
            scope=payload.scope,
            balances=account.balances,
            all_budget=payload.all_budget.to_budget_input() if payload.all_budget else None,
        )
    except AllocationError as e:
        logger.warning("allocation.rejected", merchant_id=merchant_id, code=e.code)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=error_detail(e))

    remaining = None
    if payload.scope == AllocationScope.FILTERED and payload.all_budget is not None:
        remaining = remaining_after_filtered(
            payload.all_budget.to_budget_input(),
            payload.budget.to_budget_input(),
        )

    if payload.dry_run:
        return AllocationResponse.from_allocation(allocation, remaining=remaining)

    gate = await load_write_gate(store, account, now)
    result = await store.apply_updates(merchant_id, allocation_updates(allocation), gate=gate)
    try:
        result.raise_for_failures()
    except PartialFailureError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error_detail(e))
    return AllocationResponse.from_allocation(allocation, applied=result, remaining=remaining)


@router.post("/batch-select", response_model=BatchUpdateOut)
async def batch_select(
    payload: BatchSelectRequest,
    account: MerchantAccount = Depends(get_account),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> BatchUpdateOut:
    """Release chosen permutations from batch-pending into the normal lifecycle."""
    gate = await load_write_gate(store, account, now)
    result = await promote_batch_selection(store, account.merchant_id, payload.offer_ids, gate=gate)
    try:
        result.raise_for_failures()
    except PartialFailureError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error_detail(e))
    return BatchUpdateOut.from_result(result)


async def _write(
    store: OfferStore,
    account: MerchantAccount,
    offer_id: str,
    changes: Dict[str, Any],
    now: datetime,
) -> OfferOut:
    gate = await load_write_gate(store, account, now)
    try:
        await write_offer(store, account.merchant_id, offer_id, changes, gate)
    except TierViolationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error_detail(e))
    except OfferUpdateError as e:
        logger.warning("offer.write_rejected", merchant_id=account.merchant_id, offer_id=offer_id, code=e.code)
        code = _WRITE_STATUS_BY_CODE.get(e.code, status.HTTP_409_CONFLICT)
        raise HTTPException(status_code=code, detail=error_detail(e))

    logger.info("offer.updated", merchant_id=account.merchant_id, offer_id=offer_id, columns=sorted(changes))
    offers = await store.list_offers(account.merchant_id)
    return OfferOut.from_record(next(o for o in offers if o.id == offer_id))


@router.patch("/{offer_id}", response_model=OfferOut)
async def update_offer(
    offer_id: str,
    payload: OfferUpdateRequest,
    account: MerchantAccount = Depends(get_account),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> OfferOut:
    changes = payload.to_changes()
    if not changes:
        raise BadRequestError("No offer fields to update", code="no_changes")
    return await _write(store, account, offer_id, changes, now)


@router.delete("/{offer_id}", response_model=OfferOut)
async def delete_offer(
    offer_id: str,
    account: MerchantAccount = Depends(get_account),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> OfferOut:
    """Soft delete; the offer moves to the deleted partition."""
    return await _write(store, account, offer_id, {"is_deleted": True}, now)


@router.post("/{offer_id}/resurrect", response_model=OfferOut)
async def resurrect_offer(
    offer_id: str,
    account: MerchantAccount = Depends(get_account),
    store: OfferStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> OfferOut:
    """Undo a soft delete. Dates decide where the offer lands; going live is tier-checked."""
    return await _write(store, account, offer_id, {"is_deleted": False}, now)
