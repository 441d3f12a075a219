# promo/models/campaign.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from promo.db.base import Base


class Campaign(Base):
    __tablename__ = "campaigns"

    merchant_id = Column(ForeignKey("merchant_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    status = Column(
        Enum("draft", "active", "completed", "paused", name="campaign_status"),
        nullable=False,
        server_default="active",
    )


class CampaignFolder(Base):
    __tablename__ = "campaign_folders"

    merchant_id = Column(ForeignKey("merchant_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    # draft -> campaign, one way
    status = Column(Enum("draft", "campaign", name="folder_status"), nullable=False, server_default="draft")
    is_locked = Column(Boolean, nullable=False, server_default="false")
    campaign_id = Column(ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    metrics_snapshot = Column(JSONB, nullable=True)


class CampaignFolderMembership(Base):
    __tablename__ = "campaign_folder_memberships"

    campaign_id = Column(ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = Column(ForeignKey("campaign_folders.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "folder_id", name="uq_campaign_folder_membership"),
    )
