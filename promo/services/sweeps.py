# promo/services/sweeps.py
"""
Periodic lifecycle sweeps: activation, expiry and auto-extension.

These functions only decide; the worker applies the resulting updates.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from promo.services.lifecycle import OfferLifecycle, classify_offer, parse_offer_time
from promo.services.records import OfferRecord, OfferStatus


@dataclass(frozen=True)
class Extension:
    offer_id: str
    merchant_id: str
    new_end_date: datetime
    extension_days: int
    units_sold: int
    target_units: int


@dataclass(frozen=True)
class ShortfallWarning:
    offer_id: str
    merchant_id: str
    units_sold: int
    target_units: int


@dataclass(frozen=True)
class AutoExtendPlan:
    extensions: List[Extension]
    shortfalls: List[ShortfallWarning]


def offers_to_activate(offers: Iterable[OfferRecord], now: datetime, window: timedelta) -> List[OfferRecord]:
    """
    Offers that went live since the last sweep and were never marked active.

    ``window`` is the time since the previous successful run, so each offer
    is picked up once.
    """
    window_start = now - window
    picked = []
    for offer in offers:
        if offer.activated_at is not None:
            continue
        if offer.status == OfferStatus.EXPIRED:
            continue
        if classify_offer(offer, now) != OfferLifecycle.ACTIVE:
            continue
        start = parse_offer_time(offer.start_date, now)
        if start is not None and start >= window_start:
            picked.append(offer)
    return picked


def offers_to_expire(offers: Iterable[OfferRecord], now: datetime) -> List[OfferRecord]:
    return [
        offer
        for offer in offers
        if offer.status != OfferStatus.EXPIRED and classify_offer(offer, now) == OfferLifecycle.EXPIRED
    ]


def plan_auto_extensions(
    offers: Iterable[OfferRecord],
    now: datetime,
    lookahead: timedelta,
    default_extension_days: int = 3,
) -> AutoExtendPlan:
    """
    Look at live offers ending within ``lookahead``.

    Auto-extend offers that have not reached their target units get pushed
    out by their extension days. Offers without auto-extend that asked for
    shortfall notices and are under target produce a warning instead.
    """
    horizon = now + lookahead
    extensions: List[Extension] = []
    shortfalls: List[ShortfallWarning] = []

    for offer in offers:
        if classify_offer(offer, now) != OfferLifecycle.ACTIVE:
            continue
        end = parse_offer_time(offer.end_date, now)
        if end is None or end > horizon:
            continue
        if not offer.target_units or offer.units_sold >= offer.target_units:
            continue

        if offer.auto_extend:
            days = offer.extension_days or default_extension_days
            extensions.append(Extension(
                offer_id=offer.id,
                merchant_id=offer.merchant_id or "",
                new_end_date=end + timedelta(days=days),
                extension_days=days,
                units_sold=offer.units_sold,
                target_units=offer.target_units,
            ))
        elif offer.notify_on_shortfall:
            shortfalls.append(ShortfallWarning(
                offer_id=offer.id,
                merchant_id=offer.merchant_id or "",
                units_sold=offer.units_sold,
                target_units=offer.target_units,
            ))

    return AutoExtendPlan(extensions=extensions, shortfalls=shortfalls)


def activation_updates(offers: Iterable[OfferRecord], now: datetime) -> Dict[str, Dict[str, Any]]:
    return {o.id: {"status": OfferStatus.ACTIVE.value, "activated_at": now} for o in offers}


def expiry_updates(offers: Iterable[OfferRecord]) -> Dict[str, Dict[str, Any]]:
    return {o.id: {"status": OfferStatus.EXPIRED.value} for o in offers}


def extension_updates(extensions: Iterable[Extension], now: datetime) -> Dict[str, Dict[str, Any]]:
    return {e.offer_id: {"end_date": e.new_end_date, "last_auto_extended_at": now} for e in extensions}
