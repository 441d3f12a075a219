# promo/schemas/offers.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from promo.schemas.folders import FolderOut
from promo.services.allocation import Allocation, AllocationScope, BudgetInput, ScopeRemainder
from promo.services.batch_updates import BatchUpdateResult
from promo.services.lifecycle import LifecyclePartition
from promo.services.records import DeliveryMethod, OfferRecord, OfferType, TimestampLike


def _timestamp(value: TimestampLike) -> Optional[str]:
    # Malformed stored strings are echoed back untouched.
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class OfferOut(BaseModel):
    id: str
    title: str
    campaign_folder: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    offer_type: Optional[str] = None
    max_clicks_allowed: int = 0
    click_budget_dollars: Decimal = Decimal("0")
    text_budget_dollars: Decimal = Decimal("0")
    rips_budget_dollars: Decimal = Decimal("0")
    clicks: int = 0
    redemptions: int = 0

    @classmethod
    def from_record(cls, offer: OfferRecord) -> "OfferOut":
        return cls(
            id=offer.id,
            title=offer.title,
            campaign_folder=offer.campaign_folder,
            start_date=_timestamp(offer.start_date),
            end_date=_timestamp(offer.end_date),
            status=offer.status.value if offer.status else None,
            offer_type=offer.offer_type.value if offer.offer_type else None,
            max_clicks_allowed=offer.max_clicks_allowed,
            click_budget_dollars=offer.click_budget_dollars,
            text_budget_dollars=offer.text_budget_dollars,
            rips_budget_dollars=offer.rips_budget_dollars,
            clicks=offer.clicks,
            redemptions=offer.redemptions,
        )


class PartitionOut(BaseModel):
    count: int
    offers: List[OfferOut]
    by_folder: Dict[str, List[OfferOut]]
    without_folder: List[OfferOut]
    folders: List[FolderOut]

    @classmethod
    def from_partition(cls, partition: LifecyclePartition) -> "PartitionOut":
        return cls(
            count=len(partition),
            offers=[OfferOut.from_record(o) for o in partition.offers],
            by_folder={
                folder_id: [OfferOut.from_record(o) for o in offers]
                for folder_id, offers in partition.by_folder.items()
            },
            without_folder=[OfferOut.from_record(o) for o in partition.without_folder],
            folders=[FolderOut.from_record(f) for f in partition.folders],
        )


class CategorizedOffersResponse(BaseModel):
    draft: PartitionOut
    active: PartitionOut
    future: PartitionOut
    expired: PartitionOut
    deleted: PartitionOut
    batch_pending: PartitionOut
    stage1: List[OfferOut]
    status_divergences: List[str] = Field(default_factory=list)


class BudgetIn(BaseModel):
    max_clicks: Optional[int] = None
    click_budget_dollars: Optional[Decimal] = None
    text_budget: Optional[Decimal] = None
    rips_budget: Optional[Decimal] = None

    def to_budget_input(self) -> BudgetInput:
        return BudgetInput(
            max_clicks=self.max_clicks,
            click_budget_dollars=self.click_budget_dollars,
            text_budget=self.text_budget,
            rips_budget=self.rips_budget,
        )


class AllocationRequest(BaseModel):
    offer_ids: List[str] = Field(default_factory=list)
    budget: BudgetIn
    divide_evenly: bool = False
    scope: AllocationScope = AllocationScope.ALL
    # The concurrent "apply to all" request, checked against filtered scope.
    all_budget: Optional[BudgetIn] = None
    dry_run: bool = False


class AssignmentOut(BaseModel):
    offer_id: str
    max_clicks: Optional[int] = None
    click_budget_dollars: Optional[Decimal] = None
    text_budget: Optional[Decimal] = None
    rips_budget: Optional[Decimal] = None


class BatchUpdateOut(BaseModel):
    requested: int
    succeeded: List[str]
    failed: Dict[str, str]
    complete: bool

    @classmethod
    def from_result(cls, result: BatchUpdateResult) -> "BatchUpdateOut":
        return cls(
            requested=result.requested,
            succeeded=list(result.succeeded),
            failed=dict(result.failed),
            complete=result.is_complete,
        )


class RemainderOut(BaseModel):
    max_clicks: int
    click_budget_dollars: Decimal

    @classmethod
    def from_remainder(cls, remainder: ScopeRemainder) -> "RemainderOut":
        return cls(max_clicks=remainder.max_clicks, click_budget_dollars=remainder.click_budget_dollars)


class AllocationResponse(BaseModel):
    scope: AllocationScope
    divide_evenly: bool
    target_count: int
    assignments: List[AssignmentOut]
    applied: Optional[BatchUpdateOut] = None
    # Left of the "apply to all" totals after a filtered request.
    remaining: Optional[RemainderOut] = None

    @classmethod
    def from_allocation(
        cls,
        allocation: Allocation,
        applied: Optional[BatchUpdateResult] = None,
        remaining: Optional[ScopeRemainder] = None,
    ) -> "AllocationResponse":
        return cls(
            scope=allocation.scope,
            divide_evenly=allocation.divide_evenly,
            target_count=allocation.target_count,
            assignments=[
                AssignmentOut(
                    offer_id=a.offer_id,
                    max_clicks=a.max_clicks,
                    click_budget_dollars=a.click_budget_dollars,
                    text_budget=a.text_budget,
                    rips_budget=a.rips_budget,
                )
                for a in allocation.assignments
            ],
            applied=BatchUpdateOut.from_result(applied) if applied is not None else None,
            remaining=RemainderOut.from_remainder(remaining) if remaining is not None else None,
        )


class BatchSelectRequest(BaseModel):
    offer_ids: List[str] = Field(min_length=1)


class OfferUpdateRequest(BaseModel):
    """Partial offer edit. Only the fields sent are written."""

    title: Optional[str] = None
    offer_type: Optional[OfferType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    campaign_folder: Optional[str] = None
    max_clicks_allowed: Optional[int] = Field(default=None, ge=0)
    click_budget_dollars: Optional[Decimal] = Field(default=None, ge=0)
    text_budget_dollars: Optional[Decimal] = Field(default=None, ge=0)
    rips_budget_dollars: Optional[Decimal] = Field(default=None, ge=0)
    notify_at_maximum: Optional[bool] = None
    notify_on_target_met: Optional[bool] = None
    notify_on_poor_performance: Optional[bool] = None
    notify_on_shortfall: Optional[bool] = None
    coupon_delivery_method: Optional[DeliveryMethod] = None
    add_type: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    get_new_customers_enabled: Optional[bool] = None
    auto_extend: Optional[bool] = None
    extension_days: Optional[int] = Field(default=None, ge=1)
    target_units: Optional[int] = Field(default=None, ge=0)

    def to_changes(self) -> Dict[str, Any]:
        changes = self.model_dump(exclude_unset=True)
        return {k: v.value if isinstance(v, Enum) else v for k, v in changes.items()}
