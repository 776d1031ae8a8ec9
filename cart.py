"""
Cart access

One document per (user, product) pair. Every write checks the requested
quantity against current stock; order placement checks again because stock
can move between the two.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database

import coupons
from catalog import find_product, get_product, serialize_product
from database import utcnow
from errors import EmptyCartError, InvalidInputError, NotFoundError, ProductUnavailableError
from pricing import PricedLine, price_line, subtotal_of, summarize
from schemas import Cart


def get_lines(db: Database, user_id: str) -> List[dict]:
    return list(db["cart"].find({"user_id": user_id}).sort([("created_at", -1)]))


def clear(db: Database, user_id: str) -> int:
    return db["cart"].delete_many({"user_id": user_id}).deleted_count


def remove_lines(db: Database, lines: List[dict]) -> int:
    """Delete exactly these lines. Lines added after they were read stay in the cart."""
    ids = [line["_id"] for line in lines]
    if not ids:
        return 0
    return db["cart"].delete_many({"_id": {"$in": ids}}).deleted_count


def count_items(db: Database, user_id: str) -> int:
    return sum(int(line.get("quantity", 0)) for line in db["cart"].find({"user_id": user_id}))


def _check_stock(product: dict, quantity: int) -> None:
    if quantity > int(product.get("stock", 0)):
        raise ProductUnavailableError(product.get("name", "product"), str(product["_id"]))


def add_item(db: Database, user_id: str, product_id: str, quantity: int = 1) -> int:
    if quantity < 1:
        raise InvalidInputError("Invalid quantity")
    product = get_product(db, product_id)
    pid = str(product["_id"])
    existing = db["cart"].find_one({"user_id": user_id, "product_id": pid})
    new_quantity = quantity + (existing["quantity"] if existing else 0)
    _check_stock(product, new_quantity)
    now = utcnow()
    if existing:
        db["cart"].update_one({"_id": existing["_id"]}, {"$set": {"quantity": new_quantity, "updated_at": now}})
    else:
        line = Cart(user_id=user_id, product_id=pid, quantity=quantity)
        db["cart"].insert_one({**line.model_dump(), "created_at": now, "updated_at": now})
    return count_items(db, user_id)


def update_item(db: Database, user_id: str, product_id: str, quantity: int) -> None:
    if quantity < 1:
        raise InvalidInputError("Invalid quantity")
    line = db["cart"].find_one({"user_id": user_id, "product_id": product_id})
    if line is None:
        raise NotFoundError("Cart item")
    _check_stock(get_product(db, product_id), quantity)
    db["cart"].update_one({"_id": line["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})


def remove_item(db: Database, user_id: str, product_id: str) -> None:
    res = db["cart"].delete_one({"user_id": user_id, "product_id": product_id})
    if res.deleted_count == 0:
        raise NotFoundError("Cart item")


def priced_lines(db: Database, user_id: str, now: Optional[datetime] = None) -> List[Tuple[dict, PricedLine]]:
    """Cart lines joined with their products. Lines whose product is gone are skipped."""
    result = []
    for line in get_lines(db, user_id):
        product = find_product(db, line["product_id"])
        if product is None:
            continue
        result.append((line, price_line(product, int(line["quantity"]), now)))
    return result


def get_cart(db: Database, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    pairs = priced_lines(db, user_id, now)
    breakdown = summarize([pl for _, pl in pairs])
    items = []
    for line, pl in pairs:
        items.append({
            "id": str(line["_id"]),
            "quantity": pl.quantity,
            "product": serialize_product(pl.product, now),
            "effective_price": float(pl.unit_price),
            "item_total": float(pl.line_total),
        })
    return {
        "items": items,
        "summary": {
            "item_count": len(items),
            "total_quantity": sum(pl.quantity for _, pl in pairs),
            **breakdown.amounts(),
        },
    }


def preview_coupon(db: Database, user_id: str, code: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Price the current cart with ``code`` applied. Nothing is claimed."""
    if not coupons.normalize_code(code):
        raise InvalidInputError("Coupon code is required")
    now = now or utcnow()
    lines = [pl for _, pl in priced_lines(db, user_id, now)]
    quote = coupons.resolve(db, code, subtotal_of(lines), now)
    if not lines:
        raise EmptyCartError()
    breakdown = summarize(lines, quote.discount)
    return {
        "coupon": {"code": quote.code, "type": quote.type, "value": quote.value},
        "discount": float(breakdown.discount),
        "summary": breakdown.amounts(),
    }
