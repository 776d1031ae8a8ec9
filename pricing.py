"""
Pricing engine

Turns catalog products and quantities into the money figures shown in the
cart and frozen onto orders. All arithmetic is done in Decimal; each derived
field is rounded once, half away from zero, to paise.
"""
import os
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from database import as_utc, utcnow

TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.18"))  # GST
SHIPPING_FEE = Decimal(os.getenv("SHIPPING_FEE", "40"))
FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "500"))

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_sale_live(product: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not product.get("is_flash_sale"):
        return False
    ends_at = as_utc(product.get("flash_sale_end"))
    if product.get("flash_sale_price") is None or ends_at is None:
        return False
    return (now or utcnow()) < ends_at


def effective_price(product: Dict[str, Any], now: Optional[datetime] = None) -> Decimal:
    if is_sale_live(product, now):
        return to_decimal(product["flash_sale_price"])
    return to_decimal(product.get("price"))


class PricedLine(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: Dict[str, Any]
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    on_sale: bool = False

    @property
    def product_id(self) -> str:
        return str(self.product["_id"])

    @property
    def list_total(self) -> Decimal:
        mrp = self.product.get("mrp") or self.product.get("price")
        return to_decimal(mrp) * self.quantity


class PriceBreakdown(BaseModel):
    lines: List[PricedLine]
    subtotal: Decimal
    total_mrp: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal

    @property
    def savings(self) -> Decimal:
        return round_money(self.total_mrp - self.subtotal)

    def amounts(self) -> Dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "total_mrp": float(self.total_mrp),
            "savings": float(self.savings),
            "discount": float(self.discount),
            "shipping": float(self.shipping),
            "tax": float(self.tax),
            "total": float(self.total),
        }


def price_line(product: Dict[str, Any], quantity: int, now: Optional[datetime] = None) -> PricedLine:
    unit = effective_price(product, now)
    return PricedLine(
        product=product,
        quantity=quantity,
        unit_price=unit,
        line_total=round_money(unit * quantity),
        on_sale=is_sale_live(product, now),
    )


def shipping_for(subtotal: Decimal) -> Decimal:
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return ZERO.quantize(CENT)
    return round_money(SHIPPING_FEE)


def tax_for(subtotal: Decimal) -> Decimal:
    # charged on the pre-discount subtotal
    return round_money(subtotal * TAX_RATE)


def subtotal_of(lines: Iterable[PricedLine]) -> Decimal:
    return round_money(sum((line.line_total for line in lines), ZERO))


def summarize(lines: List[PricedLine], discount: Any = ZERO) -> PriceBreakdown:
    subtotal = subtotal_of(lines)
    total_mrp = round_money(sum((line.list_total for line in lines), ZERO))
    discount = round_money(min(max(to_decimal(discount), ZERO), subtotal))
    shipping = shipping_for(subtotal)
    tax = tax_for(subtotal)
    return PriceBreakdown(
        lines=lines,
        subtotal=subtotal,
        total_mrp=total_mrp,
        discount=discount,
        shipping=shipping,
        tax=tax,
        total=round_money(subtotal - discount + shipping + tax),
    )
