# promo/services/tier_limits.py
"""
Static membership tier capability table.

This module is the single source of truth for tier limits, pricing and the
upgrade copy shown next to a gated feature. Everything here is built once at
import time and is read-only afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple

from promo.services.records import DeliveryMethod, MembershipTier, OfferType


@dataclass(frozen=True)
class TierPricing:
    monthly_fee: Decimal
    text_cost_start: Decimal
    text_cost_after_3000: Optional[Decimal] = None
    monthly_texts: Optional[int] = None
    price_per_click: Optional[Decimal] = None


@dataclass(frozen=True)
class TierCapabilities:
    max_active_offers: int
    allowed_offer_types: FrozenSet[OfferType]
    allow_countdown: bool
    allow_folders: bool
    allow_notifications: bool
    allow_auto_extend: bool
    allow_media: bool
    allow_customer_acquisition: bool
    allowed_delivery_methods: FrozenSet[DeliveryMethod]
    pricing: TierPricing


# Ascending order used for "minimum tier" scans and upgrade suggestions.
TIER_ORDER: Tuple[MembershipTier, ...] = (
    MembershipTier.NEST,
    MembershipTier.FREEBYRD,
    MembershipTier.GLIDE,
    MembershipTier.SOAR,
    MembershipTier.SOAR_PLUS,
    MembershipTier.SOAR_PLATINUM,
)

_BASIC_TYPES = frozenset({OfferType.PERCENTAGE, OfferType.DOLLAR_AMOUNT})
_STANDARD_TYPES = frozenset({
    OfferType.PERCENTAGE,
    OfferType.DOLLAR_AMOUNT,
    OfferType.BOGO,
    OfferType.SPEND_THRESHOLD,
})

_APP_DELIVERY = frozenset({
    DeliveryMethod.COUPON_CODES,
    DeliveryMethod.TEXT_MESSAGE_ALERTS,
    DeliveryMethod.MMS_BASED_COUPONS,
    DeliveryMethod.MOBILE_APP_BASED_COUPONS,
})
_ALL_DELIVERY = _APP_DELIVERY | {DeliveryMethod.MOBILE_WALLET_PASSES}

_SOAR_TEXT_COST = Decimal("0.0079")


def _soar_family(max_active_offers: int, monthly_texts: int) -> TierCapabilities:
    return TierCapabilities(
        max_active_offers=max_active_offers,
        allowed_offer_types=_STANDARD_TYPES,
        allow_countdown=True,
        allow_folders=True,
        allow_notifications=True,
        allow_auto_extend=True,
        allow_media=True,
        allow_customer_acquisition=True,
        allowed_delivery_methods=_ALL_DELIVERY,
        pricing=TierPricing(
            monthly_fee=Decimal("0"),
            text_cost_start=_SOAR_TEXT_COST,
            monthly_texts=monthly_texts,
        ),
    )


TIER_LIMITS: Mapping[MembershipTier, TierCapabilities] = MappingProxyType({
    MembershipTier.NEST: TierCapabilities(
        max_active_offers=1,
        allowed_offer_types=_BASIC_TYPES,
        allow_countdown=False,
        allow_folders=False,
        allow_notifications=False,
        allow_auto_extend=False,
        allow_media=False,
        allow_customer_acquisition=False,
        allowed_delivery_methods=frozenset({DeliveryMethod.COUPON_CODES}),
        pricing=TierPricing(monthly_fee=Decimal("0"), text_cost_start=Decimal("0")),
    ),
    MembershipTier.FREEBYRD: TierCapabilities(
        max_active_offers=3,
        allowed_offer_types=_STANDARD_TYPES,
        allow_countdown=False,
        allow_folders=False,
        allow_notifications=False,
        allow_auto_extend=False,
        allow_media=True,
        allow_customer_acquisition=False,
        allowed_delivery_methods=frozenset({
            DeliveryMethod.COUPON_CODES,
            DeliveryMethod.TEXT_MESSAGE_ALERTS,
        }),
        pricing=TierPricing(
            monthly_fee=Decimal("0"),
            text_cost_start=Decimal("0.021"),
            text_cost_after_3000=Decimal("0.013"),
        ),
    ),
    MembershipTier.GLIDE: TierCapabilities(
        max_active_offers=5,
        allowed_offer_types=_STANDARD_TYPES,
        allow_countdown=True,
        allow_folders=True,
        allow_notifications=True,
        allow_auto_extend=True,
        allow_media=True,
        allow_customer_acquisition=False,
        allowed_delivery_methods=_APP_DELIVERY,
        pricing=TierPricing(
            monthly_fee=Decimal("0"),
            text_cost_start=_SOAR_TEXT_COST,
            monthly_texts=1600,
        ),
    ),
    MembershipTier.SOAR: _soar_family(max_active_offers=20, monthly_texts=2500),
    MembershipTier.SOAR_PLUS: _soar_family(max_active_offers=50, monthly_texts=7700),
    MembershipTier.SOAR_PLATINUM: _soar_family(max_active_offers=100, monthly_texts=14000),
})

# Capability attributes that can be asked about by name.
FEATURE_KEYS: Tuple[str, ...] = (
    "max_active_offers",
    "allowed_offer_types",
    "allow_countdown",
    "allow_folders",
    "allow_notifications",
    "allow_auto_extend",
    "allow_media",
    "allow_customer_acquisition",
    "allowed_delivery_methods",
)

# Lifetime text count after which FREEBYRD switches to the lower rate.
FREEBYRD_RATE_BREAK = 3000

UPGRADE_MESSAGES: Mapping[str, str] = MappingProxyType({
    "countdown": "Countdown timers create urgency and boost conversions!",
    "folders": "Campaign folders help you stay organized with multiple offers.",
    "notifications": "Get SMS alerts when your offers perform well.",
    "auto_extend": "Auto-extend keeps successful offers running automatically.",
    "media": "Product images and videos showcase your offerings better.",
    "customer_acquisition": "Pay-per-click customer acquisition brings new customers to your business.",
    "wallet_passes": "Mobile wallet passes make redemption seamless for customers.",
})

DEFAULT_UPGRADE_MESSAGE = "Unlock this premium feature"
