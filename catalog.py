"""
Catalog access: product reads and the stock counters orders move.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.database import Database

from database import utcnow
from errors import NotFoundError
from pricing import effective_price, is_sale_live


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def find_product(db: Database, product_id: Any) -> Optional[dict]:
    oid = parse_object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one({"_id": oid})


def get_product(db: Database, product_id: Any) -> dict:
    product = find_product(db, product_id)
    if product is None:
        raise NotFoundError("Product")
    return product


def decrement_stock(db: Database, product_id: Any, quantity: int) -> bool:
    """Take ``quantity`` units out of stock and count them as sold.

    The stock check and the decrement are one conditional update, so two
    checkouts racing for the last units cannot both succeed.
    """
    updated = db["product"].find_one_and_update(
        {"_id": parse_object_id(product_id), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sold_count": quantity}},
    )
    return updated is not None


def increment_stock(db: Database, product_id: Any, quantity: int) -> None:
    db["product"].update_one(
        {"_id": parse_object_id(product_id)},
        {"$inc": {"stock": quantity, "sold_count": -quantity}},
    )


def serialize_product(doc: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    data["effective_price"] = float(effective_price(doc, now))
    data["on_sale"] = is_sale_live(doc, now)
    return data


def list_products(
    db: Database,
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    flash_sale: bool = False,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    filter_q: Dict[str, Any] = {}
    if q:
        filter_q["$or"] = [
            {"name": {"$regex": q, "$options": "i"}},
            {"description": {"$regex": q, "$options": "i"}},
            {"brand": {"$regex": q, "$options": "i"}},
            {"tags": {"$regex": q, "$options": "i"}},
        ]
    if category:
        filter_q["category"] = category
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["price"] = price_filter
    if flash_sale:
        filter_q["is_flash_sale"] = True
        # stored datetimes come back naive UTC
        filter_q["flash_sale_end"] = {"$gt": now.astimezone(timezone.utc).replace(tzinfo=None)}

    sort_spec = None
    if sort == "price_asc":
        sort_spec = [("price", 1)]
    elif sort == "price_desc":
        sort_spec = [("price", -1)]
    elif sort == "rating_desc":
        sort_spec = [("rating", -1)]
    elif sort == "popular":
        sort_spec = [("sold_count", -1)]

    total = db["product"].count_documents(filter_q)
    cursor = db["product"].find(filter_q)
    if sort_spec:
        cursor = cursor.sort(sort_spec)
    cursor = cursor.skip((page - 1) * limit).limit(limit)

    items = [serialize_product(doc, now) for doc in cursor]
    return {"items": items, "page": page, "limit": limit, "total": total}
