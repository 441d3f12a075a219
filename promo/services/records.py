# promo/services/records.py
"""
Plain records exchanged between the storage layer and the rule engines.

The engines never touch ORM objects or sessions; the store converts rows to
these frozen dataclasses and the engines return new records or partial
updates keyed by offer id.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar, Union

TimestampLike = Union[datetime, str, None]

E = TypeVar("E", bound=Enum)

_ZERO = Decimal("0")


class OfferType(str, Enum):
    PERCENTAGE = "percentage"
    DOLLAR_AMOUNT = "dollar_amount"
    BOGO = "bogo"
    SPEND_THRESHOLD = "spend_threshold"
    BUY_X_GET_Y = "buy_x_get_y"


class DeliveryMethod(str, Enum):
    COUPON_CODES = "coupon_codes"
    TEXT_MESSAGE_ALERTS = "text_message_alerts"
    MMS_BASED_COUPONS = "mms_based_coupons"
    MOBILE_APP_BASED_COUPONS = "mobile_app_based_coupons"
    MOBILE_WALLET_PASSES = "mobile_wallet_passes"


class OfferStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"


class FolderStatus(str, Enum):
    DRAFT = "draft"
    CAMPAIGN = "campaign"


class MembershipTier(str, Enum):
    NEST = "NEST"
    FREEBYRD = "FREEBYRD"
    GLIDE = "GLIDE"
    SOAR = "SOAR"
    SOAR_PLUS = "SOAR_PLUS"
    SOAR_PLATINUM = "SOAR_PLATINUM"


def coerce_enum(enum_cls: Type[E], value: Any) -> Optional[E]:
    """Return the enum member for value, or None when it is empty or unknown."""
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def coerce_timestamp(value: TimestampLike) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts datetimes and ISO-8601 strings ("2025-01-01T00:00", with or
    without offset, trailing "Z" allowed). Anything unparseable is treated
    as missing so callers fall back to the unscheduled interpretation.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def coerce_money(value: Any) -> Decimal:
    if value is None or value == "":
        return _ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return _ZERO


@dataclass(frozen=True)
class OfferRecord:
    id: str
    merchant_id: Optional[str] = None
    title: str = ""

    # Lifecycle inputs
    start_date: TimestampLike = None
    end_date: TimestampLike = None
    is_deleted: bool = False
    batch_pending_selection: bool = False

    campaign_folder: Optional[str] = None

    # Budget / caps
    max_clicks_allowed: int = 0
    click_budget_dollars: Decimal = _ZERO
    text_budget_dollars: Decimal = _ZERO
    rips_budget_dollars: Decimal = _ZERO
    notify_at_maximum: bool = False
    notify_on_target_met: bool = False
    notify_on_poor_performance: bool = False
    notify_on_shortfall: bool = False

    offer_type: Optional[OfferType] = None
    status: Optional[OfferStatus] = None
    last_auto_extended_at: TimestampLike = None
    activated_at: TimestampLike = None

    # Capability-relevant settings
    coupon_delivery_method: Optional[DeliveryMethod] = None
    add_type: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    get_new_customers_enabled: bool = False
    auto_extend: bool = False
    extension_days: Optional[int] = None
    target_units: Optional[int] = None
    units_sold: int = 0

    # Performance counters
    clicks: int = 0
    redemptions: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OfferRecord":
        def _b(key: str) -> bool:
            return bool(row.get(key) or False)

        def _i(key: str, default: Optional[int] = 0) -> Optional[int]:
            v = row.get(key)
            return default if v is None else int(v)

        return cls(
            id=str(row["id"]),
            merchant_id=row.get("merchant_id"),
            title=row.get("title") or "",
            start_date=row.get("start_date"),
            end_date=row.get("end_date"),
            is_deleted=_b("is_deleted"),
            batch_pending_selection=_b("batch_pending_selection"),
            campaign_folder=row.get("campaign_folder"),
            max_clicks_allowed=_i("max_clicks_allowed"),
            click_budget_dollars=coerce_money(row.get("click_budget_dollars")),
            text_budget_dollars=coerce_money(row.get("text_budget_dollars")),
            rips_budget_dollars=coerce_money(row.get("rips_budget_dollars")),
            notify_at_maximum=_b("notify_at_maximum"),
            notify_on_target_met=_b("notify_on_target_met"),
            notify_on_poor_performance=_b("notify_on_poor_performance"),
            notify_on_shortfall=_b("notify_on_shortfall"),
            offer_type=coerce_enum(OfferType, row.get("offer_type")),
            status=coerce_enum(OfferStatus, row.get("status")),
            last_auto_extended_at=row.get("last_auto_extended_at"),
            activated_at=row.get("activated_at"),
            coupon_delivery_method=coerce_enum(DeliveryMethod, row.get("coupon_delivery_method")),
            add_type=row.get("add_type"),
            image_url=row.get("image_url"),
            video_url=row.get("video_url"),
            get_new_customers_enabled=_b("get_new_customers_enabled"),
            auto_extend=_b("auto_extend"),
            extension_days=_i("extension_days", None),
            target_units=_i("target_units", None),
            units_sold=_i("units_sold"),
            clicks=_i("clicks"),
            redemptions=_i("redemptions"),
        )


@dataclass(frozen=True)
class FolderMetrics:
    offer_count: int
    total_max_clicks: int
    click_budget_dollars: Decimal
    text_budget_dollars: Decimal
    rips_budget_dollars: Decimal
    clicks: int
    redemptions: int

    @property
    def conversion_rate(self) -> Optional[float]:
        if self.clicks <= 0:
            return None
        return self.redemptions / self.clicks

    def to_dict(self) -> dict:
        return {
            "offer_count": self.offer_count,
            "total_max_clicks": self.total_max_clicks,
            "click_budget_dollars": str(self.click_budget_dollars),
            "text_budget_dollars": str(self.text_budget_dollars),
            "rips_budget_dollars": str(self.rips_budget_dollars),
            "clicks": self.clicks,
            "redemptions": self.redemptions,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FolderMetrics":
        return cls(
            offer_count=int(data.get("offer_count", 0)),
            total_max_clicks=int(data.get("total_max_clicks", 0)),
            click_budget_dollars=coerce_money(data.get("click_budget_dollars")),
            text_budget_dollars=coerce_money(data.get("text_budget_dollars")),
            rips_budget_dollars=coerce_money(data.get("rips_budget_dollars")),
            clicks=int(data.get("clicks", 0)),
            redemptions=int(data.get("redemptions", 0)),
        )


@dataclass(frozen=True)
class FolderRecord:
    id: str
    name: str
    status: FolderStatus = FolderStatus.DRAFT
    is_locked: bool = False
    merchant_id: Optional[str] = None
    campaign_id: Optional[str] = None
    metrics_snapshot: Optional[FolderMetrics] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FolderRecord":
        snapshot = row.get("metrics_snapshot")
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            status=coerce_enum(FolderStatus, row.get("status")) or FolderStatus.DRAFT,
            is_locked=bool(row.get("is_locked") or False),
            merchant_id=row.get("merchant_id"),
            campaign_id=row.get("campaign_id"),
            metrics_snapshot=FolderMetrics.from_dict(snapshot) if snapshot else None,
        )


@dataclass(frozen=True)
class AccountBalances:
    text_budget: Decimal = _ZERO
    rips_budget: Decimal = _ZERO
    bank: Decimal = _ZERO


@dataclass(frozen=True)
class MerchantAccount:
    merchant_id: str
    tier: MembershipTier = MembershipTier.NEST
    balances: AccountBalances = field(default_factory=AccountBalances)
    monthly_texts_used: int = 0
    lifetime_texts_sent: int = 0
