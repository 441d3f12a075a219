# tests/test_models.py
from dataclasses import fields

from promo.db.base import Base
from promo.models import Campaign, CampaignFolder, CampaignFolderMembership, MerchantAccount, Offer
from promo.services.records import FolderRecord, OfferRecord
from promo.services.store import UPDATABLE_COLUMNS


def _columns(model):
    return set(model.__table__.columns.keys())


def test_offer_table_backs_every_record_field():
    assert {f.name for f in fields(OfferRecord)} <= _columns(Offer)


def test_updatable_columns_exist():
    assert UPDATABLE_COLUMNS <= _columns(Offer)
    assert "merchant_id" not in UPDATABLE_COLUMNS
    assert "id" not in UPDATABLE_COLUMNS


def test_folder_table_backs_every_record_field():
    assert {f.name for f in fields(FolderRecord)} <= _columns(CampaignFolder)


def test_account_balances_columns():
    assert {
        "membership_tier",
        "merchant_text_budget",
        "merchant_rips_budget",
        "merchant_bank",
        "monthly_texts_used",
        "lifetime_texts_sent",
    } <= _columns(MerchantAccount)


def test_tables_registered():
    tables = Base.metadata.tables
    assert {"offers", "campaigns", "campaign_folders", "campaign_folder_memberships", "merchant_accounts"} <= set(tables)
    assert Campaign.__table__.c.merchant_id.foreign_keys


def test_folder_membership_is_unique_per_campaign():
    names = {c.name for c in CampaignFolderMembership.__table__.constraints}
    assert "uq_campaign_folder_membership" in names
