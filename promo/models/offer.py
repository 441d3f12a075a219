# promo/models/offer.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text

from promo.db.base import Base


class Offer(Base):
    __tablename__ = "offers"

    merchant_id = Column(ForeignKey("merchant_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False, server_default="")
    description = Column(Text)

    offer_type = Column(
        Enum("percentage", "dollar_amount", "bogo", "spend_threshold", "buy_x_get_y", name="offer_type"),
        nullable=False,
        server_default="percentage",
    )
    # Cached lifecycle; the dates below are authoritative.
    status = Column(Enum("draft", "active", "expired", name="offer_status"), nullable=True, server_default="draft")

    # Null dates mean "not scheduled yet".
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    last_auto_extended_at = Column(DateTime(timezone=True), nullable=True)

    is_deleted = Column(Boolean, nullable=False, server_default="false")
    batch_pending_selection = Column(Boolean, nullable=False, server_default="false")

    campaign_folder = Column(ForeignKey("campaign_folders.id", ondelete="SET NULL"), nullable=True, index=True)

    # Budget / caps
    max_clicks_allowed = Column(Integer, nullable=False, server_default="0")
    click_budget_dollars = Column(Numeric(12, 2), nullable=False, server_default="0")
    text_budget_dollars = Column(Numeric(12, 2), nullable=False, server_default="0")
    rips_budget_dollars = Column(Numeric(12, 2), nullable=False, server_default="0")
    notify_at_maximum = Column(Boolean, nullable=False, server_default="false")
    notify_on_target_met = Column(Boolean, nullable=False, server_default="false")
    notify_on_poor_performance = Column(Boolean, nullable=False, server_default="false")
    notify_on_shortfall = Column(Boolean, nullable=False, server_default="false")

    # Tier-gated settings
    coupon_delivery_method = Column(String(40), nullable=True)
    add_type = Column(String(40), nullable=True)
    image_url = Column(String(500), nullable=True)
    video_url = Column(String(500), nullable=True)
    get_new_customers_enabled = Column(Boolean, nullable=False, server_default="false")
    auto_extend = Column(Boolean, nullable=False, server_default="false")
    extension_days = Column(Integer, nullable=True)
    target_units = Column(Integer, nullable=True)
    units_sold = Column(Integer, nullable=False, server_default="0")

    clicks = Column(Integer, nullable=False, server_default="0")
    redemptions = Column(Integer, nullable=False, server_default="0")

    __table_args__ = (
        Index("idx_offers_merchant_deleted", "merchant_id", "is_deleted"),
        Index("idx_offers_status_end", "status", "end_date"),
    )
