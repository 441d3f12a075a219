# promo/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

# Import key service functions and classes for convenient access
from promo.services.allocation import (
    AllocationError,
    BudgetInput,
    BudgetOverflowError,
    plan_allocation,
)
from promo.services.batch_updates import (
    BatchUpdateResult,
    PartialFailureError,
    apply_offer_updates,
    promote_batch_selection,
)
from promo.services.folders import FolderStateError, PromotionRequest
from promo.services.lifecycle import OfferLifecycle, categorize_offers, classify_offer
from promo.services.tier_gate import (
    TierGateError,
    TierViolationError,
    can_access,
    validate_offer_against_tier,
)

__all__ = [
    # Allocation
    "AllocationError",
    "BudgetInput",
    "BudgetOverflowError",
    "plan_allocation",
    # Batch updates
    "BatchUpdateResult",
    "PartialFailureError",
    "apply_offer_updates",
    "promote_batch_selection",
    # Folders
    "FolderStateError",
    "PromotionRequest",
    # Lifecycle
    "OfferLifecycle",
    "categorize_offers",
    "classify_offer",
    # Tiers
    "TierGateError",
    "TierViolationError",
    "can_access",
    "validate_offer_against_tier",
]
