"""
Coupon resolution and usage accounting.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel
from pymongo.database import Database

from database import as_utc, utcnow
from errors import InvalidCouponError, MinPurchaseNotMetError
from pricing import round_money, to_decimal

logger = logging.getLogger(__name__)


class CouponQuote(BaseModel):
    coupon_id: Any
    code: str
    type: str
    value: float
    usage_limit: Optional[int] = None
    discount: Decimal


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_redeemable(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Active, inside its validity window and not used up."""
    now = now or utcnow()
    if not coupon.get("is_active", True):
        return False
    valid_from = as_utc(coupon.get("valid_from"))
    if valid_from is not None and valid_from > now:
        return False
    valid_until = as_utc(coupon.get("valid_until"))
    if valid_until is not None and valid_until < now:
        return False
    limit = coupon.get("usage_limit")
    if limit is not None and coupon.get("used_count", 0) >= limit:
        return False
    return True


def is_eligible(coupon: Dict[str, Any], subtotal: Any, now: Optional[datetime] = None) -> bool:
    return is_redeemable(coupon, now) and to_decimal(subtotal) >= to_decimal(coupon.get("min_purchase"))


def compute_discount(coupon: Dict[str, Any], subtotal: Any) -> Decimal:
    subtotal = to_decimal(subtotal)
    value = to_decimal(coupon["value"])
    if coupon["type"] == "percentage":
        discount = subtotal * value / 100
        cap = coupon.get("max_discount")
        if cap is not None and discount > to_decimal(cap):
            discount = to_decimal(cap)
    else:
        discount = value
    # a fixed coupon bigger than the basket must not push the total below zero
    return round_money(min(discount, subtotal))


def resolve(db: Database, code: str, subtotal: Any, now: Optional[datetime] = None) -> CouponQuote:
    normalized = normalize_code(code)
    coupon = db["coupon"].find_one({"code": normalized}) if normalized else None
    if coupon is None or not is_redeemable(coupon, now):
        raise InvalidCouponError(normalized)
    if not is_eligible(coupon, subtotal, now):
        raise MinPurchaseNotMetError(float(coupon.get("min_purchase") or 0))
    return CouponQuote(
        coupon_id=coupon["_id"],
        code=coupon["code"],
        type=coupon["type"],
        value=coupon["value"],
        usage_limit=coupon.get("usage_limit"),
        discount=compute_discount(coupon, subtotal),
    )


def claim_usage(db: Database, quote: CouponQuote) -> bool:
    """Count one use of the coupon. False when the last use was taken meanwhile."""
    query: Dict[str, Any] = {"_id": quote.coupon_id, "is_active": {"$ne": False}}
    if quote.usage_limit is not None:
        query["used_count"] = {"$lt": quote.usage_limit}
    claimed = db["coupon"].find_one_and_update(query, {"$inc": {"used_count": 1}})
    if claimed is None:
        logger.info("Coupon %s exhausted before it could be claimed", quote.code)
        return False
    return True


def release_usage(db: Database, quote: CouponQuote) -> None:
    db["coupon"].update_one(
        {"_id": quote.coupon_id, "used_count": {"$gt": 0}}, {"$inc": {"used_count": -1}}
    )
