# promo/routes/tiers.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from promo.routes.deps import error_detail, get_account
from promo.schemas.tiers import (
    MinimumTierResponse,
    OfferTierCheckRequest,
    TextQuoteOut,
    TierOut,
    TierValidationResponse,
)
from promo.services.records import MerchantAccount, OfferStatus
from promo.services.tier_gate import (
    TierGateError,
    TierValidationResult,
    minimum_tier_for,
    quote_texts,
    resolve_tier,
    validate_active_offer_count,
    validate_offer_against_tier,
)
from promo.services.tier_limits import TIER_LIMITS, TIER_ORDER

router = APIRouter(prefix="/tiers", tags=["tiers"])


@router.get("", response_model=List[TierOut])
async def list_tiers() -> List[TierOut]:
    return [TierOut.from_capabilities(t, TIER_LIMITS[t]) for t in TIER_ORDER]


@router.get("/features/{feature}/minimum", response_model=MinimumTierResponse)
async def feature_minimum(feature: str) -> MinimumTierResponse:
    try:
        return MinimumTierResponse(feature=feature, minimum_tier=minimum_tier_for(feature))
    except TierGateError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_detail(e))


@router.get("/text-quote", response_model=TextQuoteOut)
async def text_quote(
    count: int = Query(..., ge=1),
    account: MerchantAccount = Depends(get_account),
) -> TextQuoteOut:
    """Price a text send for the calling merchant's tier and usage."""
    return TextQuoteOut.from_quote(quote_texts(account, count), count)


@router.get("/{tier}", response_model=TierOut)
async def get_tier(tier: str) -> TierOut:
    try:
        resolved = resolve_tier(tier)
    except TierGateError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_detail(e))
    return TierOut.from_capabilities(resolved, TIER_LIMITS[resolved])


@router.post("/{tier}/validate-offer", response_model=TierValidationResponse)
async def validate_offer(tier: str, payload: OfferTierCheckRequest) -> TierValidationResponse:
    """Report every setting the tier does not allow; never rejects the request itself."""
    try:
        resolved = resolve_tier(tier)
    except TierGateError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_detail(e))

    result = validate_offer_against_tier(payload.to_record(), resolved, payload.target_status)
    violations = list(result.violations)
    if payload.active_count is not None and payload.target_status != OfferStatus.DRAFT:
        violations.extend(validate_active_offer_count(resolved, payload.active_count).violations)

    return TierValidationResponse.from_result(
        resolved, TierValidationResult(valid=not violations, violations=violations)
    )
