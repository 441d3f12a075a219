# promo/services/tier_gate.py
"""
Membership tier gate.

Answers capability questions against the tier table and validates offers
before they go live. Validation collects every violation with the lowest
tier that would allow it; ``enforce_offer_tier`` raises them together as a
``TierViolationError``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from promo.core.logging import get_structlog_logger
from promo.services.lifecycle import OfferLifecycle, classify_offer
from promo.services.records import (
    DeliveryMethod,
    MembershipTier,
    MerchantAccount,
    OfferRecord,
    OfferStatus,
    OfferType,
)
from promo.services.tier_limits import (
    DEFAULT_UPGRADE_MESSAGE,
    FEATURE_KEYS,
    FREEBYRD_RATE_BREAK,
    TIER_LIMITS,
    TIER_ORDER,
    UPGRADE_MESSAGES,
    TierCapabilities,
)

logger = get_structlog_logger(__name__)

TierLike = Union[MembershipTier, str]


class TierGateError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


@dataclass(frozen=True)
class TierViolation:
    field: str
    message: str
    upgrade_required: Optional[MembershipTier]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "message": self.message,
            "upgrade_required": self.upgrade_required.value if self.upgrade_required else None,
        }


class TierViolationError(TierGateError):
    """An offer asked for something the merchant's tier does not include."""

    def __init__(self, tier: MembershipTier, violations: List[TierViolation]):
        self.tier = tier
        self.violations = list(violations)
        self.minimum_tier = _highest_required(self.violations)
        super().__init__(
            code="tier_violation",
            message="; ".join(v.message for v in self.violations),
            details={
                "tier": tier.value,
                "minimum_tier": self.minimum_tier.value if self.minimum_tier else None,
                "violations": [v.to_dict() for v in self.violations],
            },
        )


@dataclass(frozen=True)
class TierValidationResult:
    valid: bool
    violations: List[TierViolation] = field(default_factory=list)


@dataclass(frozen=True)
class TextQuote:
    allowed: bool
    remaining: Optional[int]
    monthly_limit: Optional[int]
    current_usage: int
    cost_per_text: Decimal
    total_cost: Decimal
    tier: MembershipTier


def resolve_tier(tier: TierLike) -> MembershipTier:
    if isinstance(tier, MembershipTier):
        return tier
    try:
        return MembershipTier(str(tier).strip().upper())
    except ValueError:
        raise TierGateError(
            code="unknown_tier",
            message=f"Unknown membership tier: {tier!r}",
            details={"tier": tier, "valid_tiers": [t.value for t in TIER_ORDER]},
        ) from None


def capabilities_of(tier: TierLike) -> TierCapabilities:
    return TIER_LIMITS[resolve_tier(tier)]


def can_access(tier: TierLike, feature: str) -> bool:
    """
    Whether a tier has a capability.

    Booleans are returned as-is, sets count when non-empty and numbers when
    positive.
    """
    if feature not in FEATURE_KEYS:
        raise TierGateError(
            code="unknown_feature",
            message=f"Unknown tier feature: {feature!r}",
            details={"feature": feature, "valid_features": list(FEATURE_KEYS)},
        )
    value = getattr(capabilities_of(tier), feature)
    if isinstance(value, bool):
        return value
    if isinstance(value, (set, frozenset)):
        return len(value) > 0
    if isinstance(value, (int, float, Decimal)):
        return value > 0
    return False


def minimum_tier_for(feature: str) -> Optional[MembershipTier]:
    for tier in TIER_ORDER:
        if can_access(tier, feature):
            return tier
    return None


def minimum_tier_for_offer_type(offer_type: OfferType) -> Optional[MembershipTier]:
    for tier in TIER_ORDER:
        if offer_type in TIER_LIMITS[tier].allowed_offer_types:
            return tier
    return None


def minimum_tier_for_delivery_method(method: DeliveryMethod) -> Optional[MembershipTier]:
    for tier in TIER_ORDER:
        if method in TIER_LIMITS[tier].allowed_delivery_methods:
            return tier
    return None


def next_tier(tier: TierLike) -> MembershipTier:
    current = resolve_tier(tier)
    index = TIER_ORDER.index(current)
    return TIER_ORDER[min(index + 1, len(TIER_ORDER) - 1)]


def upgrade_message(required_tier: Optional[MembershipTier], feature: str) -> str:
    feature_message = UPGRADE_MESSAGES.get(feature, DEFAULT_UPGRADE_MESSAGE)
    if required_tier is None:
        return f"{feature_message} This feature is not available on any tier."
    return f"{feature_message} Upgrade to {required_tier.value} to use this feature."


def _highest_required(violations: Iterable[TierViolation]) -> Optional[MembershipTier]:
    highest = None
    for v in violations:
        if v.upgrade_required is None:
            return None
        if highest is None or TIER_ORDER.index(v.upgrade_required) > TIER_ORDER.index(highest):
            highest = v.upgrade_required
    return highest


def _flag_violation(field_name: str, feature: str, capability: str) -> TierViolation:
    required = minimum_tier_for(capability)
    return TierViolation(
        field=field_name,
        message=upgrade_message(required, feature),
        upgrade_required=required,
    )


def validate_offer_against_tier(
    offer: OfferRecord,
    tier: TierLike,
    target_status: OfferStatus = OfferStatus.ACTIVE,
) -> TierValidationResult:
    """
    Check an offer's settings against the capabilities of a tier.

    Drafts are not gated; the check applies when an offer is about to go
    live. Every problem is reported, not just the first.
    """
    current = resolve_tier(tier)
    if target_status == OfferStatus.DRAFT:
        return TierValidationResult(valid=True)

    caps = TIER_LIMITS[current]
    violations: List[TierViolation] = []

    if offer.offer_type is not None and offer.offer_type not in caps.allowed_offer_types:
        required = minimum_tier_for_offer_type(offer.offer_type)
        allowed = ", ".join(sorted(t.value for t in caps.allowed_offer_types))
        if required is None:
            message = f"{offer.offer_type.value} offers are not available on any tier."
        else:
            message = (
                f"{current.value} tier only supports {allowed} offers. "
                f"Upgrade to {required.value} to use {offer.offer_type.value} offers."
            )
        violations.append(TierViolation(field="offer_type", message=message, upgrade_required=required))

    if offer.add_type == "countdown" and not caps.allow_countdown:
        violations.append(_flag_violation("add_type", "countdown", "allow_countdown"))

    if offer.campaign_folder and not caps.allow_folders:
        violations.append(_flag_violation("campaign_folder", "folders", "allow_folders"))

    if (offer.notify_on_target_met or offer.notify_on_poor_performance) and not caps.allow_notifications:
        violations.append(_flag_violation("notifications", "notifications", "allow_notifications"))

    if offer.auto_extend and not caps.allow_auto_extend:
        violations.append(_flag_violation("auto_extend", "auto_extend", "allow_auto_extend"))

    if (offer.image_url or offer.video_url) and not caps.allow_media:
        violations.append(_flag_violation("media", "media", "allow_media"))

    if offer.get_new_customers_enabled and not caps.allow_customer_acquisition:
        violations.append(
            _flag_violation("get_new_customers_enabled", "customer_acquisition", "allow_customer_acquisition")
        )

    method = offer.coupon_delivery_method
    if method is not None and method not in caps.allowed_delivery_methods:
        required = minimum_tier_for_delivery_method(method)
        allowed = ", ".join(sorted(m.value for m in caps.allowed_delivery_methods))
        if method == DeliveryMethod.MOBILE_WALLET_PASSES:
            suffix = upgrade_message(required, "wallet_passes")
        elif required is None:
            suffix = "This delivery method is not available on any tier."
        else:
            suffix = f"Upgrade to {required.value}."
        violations.append(TierViolation(
            field="coupon_delivery_method",
            message=f"{current.value} tier only supports {allowed} delivery methods. {suffix}",
            upgrade_required=required,
        ))

    return TierValidationResult(valid=not violations, violations=violations)


def count_live_offers(
    offers: Iterable[OfferRecord],
    now: datetime,
    exclude_offer_id: Optional[str] = None,
) -> int:
    """Offers that are running or scheduled to run, per the lifecycle classifier."""
    return sum(
        1
        for offer in offers
        if offer.id != exclude_offer_id
        and classify_offer(offer, now) in (OfferLifecycle.ACTIVE, OfferLifecycle.FUTURE)
    )


def validate_active_offer_count(tier: TierLike, active_count: int) -> TierValidationResult:
    current = resolve_tier(tier)
    limit = TIER_LIMITS[current].max_active_offers
    if active_count < limit:
        return TierValidationResult(valid=True)

    required = next(
        (t for t in TIER_ORDER if TIER_LIMITS[t].max_active_offers > active_count),
        None,
    )
    plural = "" if limit == 1 else "s"
    current_plural = "" if active_count == 1 else "s"
    return TierValidationResult(
        valid=False,
        violations=[TierViolation(
            field="active_offer_count",
            message=(
                f"{current.value} tier allows maximum {limit} active offer{plural}. "
                f"You currently have {active_count} active offer{current_plural}. "
                "Please deactivate an existing offer or upgrade your tier."
            ),
            upgrade_required=required,
        )],
    )


def enforce_offer_tier(
    offer: OfferRecord,
    tier: TierLike,
    target_status: OfferStatus = OfferStatus.ACTIVE,
    active_count: Optional[int] = None,
) -> None:
    """Raise TierViolationError unless the offer may be saved with target_status."""
    current = resolve_tier(tier)
    violations = list(validate_offer_against_tier(offer, current, target_status).violations)
    if active_count is not None and target_status != OfferStatus.DRAFT:
        violations.extend(validate_active_offer_count(current, active_count).violations)

    if violations:
        error = TierViolationError(current, violations)
        logger.info(
            "tier.violation",
            offer_id=offer.id,
            tier=current.value,
            minimum_tier=error.details["minimum_tier"],
            fields=[v.field for v in violations],
        )
        raise error


def quote_texts(account: MerchantAccount, count: int) -> TextQuote:
    """Price a send of `count` texts against the merchant's tier allowance."""
    tier = account.tier
    pricing = TIER_LIMITS[tier].pricing
    usage = account.monthly_texts_used

    if tier == MembershipTier.NEST:
        return TextQuote(
            allowed=False,
            remaining=0,
            monthly_limit=0,
            current_usage=usage,
            cost_per_text=Decimal("0"),
            total_cost=Decimal("0"),
            tier=tier,
        )

    if pricing.monthly_texts is None:
        # Pay-per-text tier without a monthly cap.
        if account.lifetime_texts_sent < FREEBYRD_RATE_BREAK or pricing.text_cost_after_3000 is None:
            rate = pricing.text_cost_start
        else:
            rate = pricing.text_cost_after_3000
        return TextQuote(
            allowed=True,
            remaining=None,
            monthly_limit=None,
            current_usage=usage,
            cost_per_text=rate,
            total_cost=rate * count,
            tier=tier,
        )

    remaining = pricing.monthly_texts - usage
    return TextQuote(
        allowed=remaining >= count,
        remaining=max(0, remaining),
        monthly_limit=pricing.monthly_texts,
        current_usage=usage,
        cost_per_text=pricing.text_cost_start,
        total_cost=pricing.text_cost_start * count,
        tier=tier,
    )
