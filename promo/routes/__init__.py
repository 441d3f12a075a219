# promo/routes/__init__.py
"""
API route handlers organized by domain.
"""

from promo.routes.folders import router as folders_router
from promo.routes.health import router as health_router
from promo.routes.offers import router as offers_router
from promo.routes.tiers import router as tiers_router

__all__ = [
    "folders_router",
    "health_router",
    "offers_router",
    "tiers_router",
]
