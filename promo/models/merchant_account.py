# promo/models/merchant_account.py
from __future__ import annotations

from sqlalchemy import Column, Enum, Integer, Numeric, String

from promo.db.base import Base


class MerchantAccount(Base):
    __tablename__ = "merchant_accounts"

    business_name = Column(String(200), nullable=False, server_default="")
    membership_tier = Column(
        Enum("NEST", "FREEBYRD", "GLIDE", "SOAR", "SOAR_PLUS", "SOAR_PLATINUM", name="membership_tier"),
        nullable=False,
        server_default="NEST",
    )

    # Available balances
    merchant_text_budget = Column(Numeric(12, 2), nullable=False, server_default="0")
    merchant_rips_budget = Column(Numeric(12, 2), nullable=False, server_default="0")
    merchant_bank = Column(Numeric(12, 2), nullable=False, server_default="0")

    monthly_texts_used = Column(Integer, nullable=False, server_default="0")
    lifetime_texts_sent = Column(Integer, nullable=False, server_default="0")
