# promo/schemas/folders.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from promo.services.records import FolderMetrics, FolderRecord


class PromoteFolderRequest(BaseModel):
    # Exactly one of the two.
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = Field(default=None, max_length=200)


class FolderMetricsOut(BaseModel):
    offer_count: int
    total_max_clicks: int
    click_budget_dollars: Decimal
    text_budget_dollars: Decimal
    rips_budget_dollars: Decimal
    clicks: int
    redemptions: int
    conversion_rate: Optional[float] = None

    @classmethod
    def from_metrics(cls, metrics: FolderMetrics) -> "FolderMetricsOut":
        return cls(**metrics.to_dict(), conversion_rate=metrics.conversion_rate)


class FolderOut(BaseModel):
    id: str
    name: str
    status: str
    is_locked: bool = False
    campaign_id: Optional[str] = None
    metrics_snapshot: Optional[FolderMetricsOut] = None

    @classmethod
    def from_record(cls, folder: FolderRecord) -> "FolderOut":
        return cls(
            id=folder.id,
            name=folder.name,
            status=folder.status.value,
            is_locked=folder.is_locked,
            campaign_id=folder.campaign_id,
            metrics_snapshot=(
                FolderMetricsOut.from_metrics(folder.metrics_snapshot) if folder.metrics_snapshot else None
            ),
        )
