# promo/routes/deps.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from promo.core.exceptions import BadRequestError, NotFoundError
from promo.db.session import get_session
from promo.services.records import MerchantAccount
from promo.services.store import OfferStore


async def get_store(session: AsyncSession = Depends(get_session)) -> OfferStore:
    return OfferStore(session)


def get_merchant_id(x_merchant_id: str = Header(..., alias="X-Merchant-ID")) -> str:
    merchant_id = x_merchant_id.strip()
    if not merchant_id:
        raise BadRequestError("X-Merchant-ID header is required", code="merchant_required")
    return merchant_id


async def get_account(
    merchant_id: str = Depends(get_merchant_id),
    store: OfferStore = Depends(get_store),
) -> MerchantAccount:
    account = await store.get_account(merchant_id)
    if account is None:
        raise NotFoundError(
            "Merchant account not found",
            code="merchant_not_found",
            details={"merchant_id": merchant_id},
        )
    return account


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def error_detail(e: Any) -> Dict[str, Any]:
    """HTTPException detail for a domain error carrying code/message/details."""
    return {"code": e.code, "message": e.message, "details": e.details}
