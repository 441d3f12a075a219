# promo/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from promo.models.campaign import Campaign, CampaignFolder, CampaignFolderMembership
from promo.models.merchant_account import MerchantAccount
from promo.models.offer import Offer

__all__ = [
    "Campaign",
    "CampaignFolder",
    "CampaignFolderMembership",
    "MerchantAccount",
    "Offer",
]
