# promo/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from promo.schemas.folders import FolderMetricsOut, FolderOut, PromoteFolderRequest
from promo.schemas.offers import (
    AllocationRequest,
    AllocationResponse,
    BatchSelectRequest,
    BatchUpdateOut,
    CategorizedOffersResponse,
    OfferOut,
    PartitionOut,
)
from promo.schemas.tiers import (
    MinimumTierResponse,
    OfferTierCheckRequest,
    TierOut,
    TierValidationResponse,
)

__all__ = [
    "AllocationRequest",
    "AllocationResponse",
    "BatchSelectRequest",
    "BatchUpdateOut",
    "CategorizedOffersResponse",
    "FolderMetricsOut",
    "FolderOut",
    "MinimumTierResponse",
    "OfferOut",
    "OfferTierCheckRequest",
    "PartitionOut",
    "PromoteFolderRequest",
    "TierOut",
    "TierValidationResponse",
]
