# promo/schemas/tiers.py
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from promo.services.records import DeliveryMethod, MembershipTier, OfferRecord, OfferStatus, OfferType
from promo.services.tier_gate import TextQuote, TierValidationResult, TierViolation, next_tier
from promo.services.tier_limits import TierCapabilities


class TierPricingOut(BaseModel):
    monthly_fee: Decimal
    text_cost_start: Decimal
    text_cost_after_3000: Optional[Decimal] = None
    monthly_texts: Optional[int] = None
    price_per_click: Optional[Decimal] = None


class TierOut(BaseModel):
    tier: MembershipTier
    max_active_offers: int
    allowed_offer_types: List[OfferType]
    allow_countdown: bool
    allow_folders: bool
    allow_notifications: bool
    allow_auto_extend: bool
    allow_media: bool
    allow_customer_acquisition: bool
    allowed_delivery_methods: List[DeliveryMethod]
    pricing: TierPricingOut
    # None at the top of the ladder.
    next_tier: Optional[MembershipTier] = None

    @classmethod
    def from_capabilities(cls, tier: MembershipTier, caps: TierCapabilities) -> "TierOut":
        p = caps.pricing
        upgrade = next_tier(tier)
        return cls(
            tier=tier,
            max_active_offers=caps.max_active_offers,
            allowed_offer_types=sorted(caps.allowed_offer_types, key=lambda t: t.value),
            allow_countdown=caps.allow_countdown,
            allow_folders=caps.allow_folders,
            allow_notifications=caps.allow_notifications,
            allow_auto_extend=caps.allow_auto_extend,
            allow_media=caps.allow_media,
            allow_customer_acquisition=caps.allow_customer_acquisition,
            allowed_delivery_methods=sorted(caps.allowed_delivery_methods, key=lambda m: m.value),
            pricing=TierPricingOut(
                monthly_fee=p.monthly_fee,
                text_cost_start=p.text_cost_start,
                text_cost_after_3000=p.text_cost_after_3000,
                monthly_texts=p.monthly_texts,
                price_per_click=p.price_per_click,
            ),
            next_tier=upgrade if upgrade != tier else None,
        )


class MinimumTierResponse(BaseModel):
    feature: str
    minimum_tier: Optional[MembershipTier] = None


class OfferTierCheckRequest(BaseModel):
    offer_type: Optional[OfferType] = None
    coupon_delivery_method: Optional[DeliveryMethod] = None
    add_type: Optional[str] = None
    campaign_folder: Optional[str] = None
    notify_on_target_met: bool = False
    notify_on_poor_performance: bool = False
    auto_extend: bool = False
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    get_new_customers_enabled: bool = False
    target_status: OfferStatus = OfferStatus.ACTIVE
    active_count: Optional[int] = None

    def to_record(self) -> OfferRecord:
        return OfferRecord(
            id="",
            offer_type=self.offer_type,
            coupon_delivery_method=self.coupon_delivery_method,
            add_type=self.add_type,
            campaign_folder=self.campaign_folder,
            notify_on_target_met=self.notify_on_target_met,
            notify_on_poor_performance=self.notify_on_poor_performance,
            auto_extend=self.auto_extend,
            image_url=self.image_url,
            video_url=self.video_url,
            get_new_customers_enabled=self.get_new_customers_enabled,
        )


class TierViolationOut(BaseModel):
    field: str
    message: str
    upgrade_required: Optional[MembershipTier] = None

    @classmethod
    def from_violation(cls, violation: TierViolation) -> "TierViolationOut":
        return cls(field=violation.field, message=violation.message, upgrade_required=violation.upgrade_required)


class TierValidationResponse(BaseModel):
    tier: MembershipTier
    valid: bool
    violations: List[TierViolationOut]

    @classmethod
    def from_result(cls, tier: MembershipTier, result: TierValidationResult) -> "TierValidationResponse":
        return cls(
            tier=tier,
            valid=result.valid,
            violations=[TierViolationOut.from_violation(v) for v in result.violations],
        )


class TextQuoteOut(BaseModel):
    tier: MembershipTier
    count: int
    allowed: bool
    remaining: Optional[int] = None
    monthly_limit: Optional[int] = None
    current_usage: int
    cost_per_text: Decimal
    total_cost: Decimal

    @classmethod
    def from_quote(cls, quote: TextQuote, count: int) -> "TextQuoteOut":
        return cls(
            tier=quote.tier,
            count=count,
            allowed=quote.allowed,
            remaining=quote.remaining,
            monthly_limit=quote.monthly_limit,
            current_usage=quote.current_usage,
            cost_per_text=quote.cost_per_text,
            total_cost=quote.total_cost,
        )
