"""
Wishlist

Saved-for-later products, one document per (user, product). Moving an item
to the cart goes through cart.add_item, so it gets the same stock check as
any other cart write.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import cart
from catalog import find_product, get_product, serialize_product
from database import create_document, utcnow
from errors import AlreadyInWishlistError, NotFoundError, ProductUnavailableError
from schemas import Wishlist

logger = logging.getLogger(__name__)


def count_items(db: Database, user_id: str) -> int:
    return db["wishlist"].count_documents({"user_id": user_id})


def get_items(db: Database, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    items = []
    for entry in db["wishlist"].find({"user_id": user_id}).sort([("created_at", -1)]):
        product = find_product(db, entry["product_id"])
        if product is None:
            continue
        items.append({
            "id": str(entry["_id"]),
            "added_at": entry.get("created_at"),
            "product": serialize_product(product, now),
            "in_stock": int(product.get("stock", 0)) > 0,
        })
    return items


def add_item(db: Database, user_id: str, product_id: str) -> int:
    pid = str(get_product(db, product_id)["_id"])
    if db["wishlist"].find_one({"user_id": user_id, "product_id": pid}):
        raise AlreadyInWishlistError(pid)
    try:
        create_document(db, "wishlist", Wishlist(user_id=user_id, product_id=pid))
    except DuplicateKeyError:
        raise AlreadyInWishlistError(pid)
    return count_items(db, user_id)


def remove_item(db: Database, user_id: str, product_id: str) -> None:
    res = db["wishlist"].delete_one({"user_id": user_id, "product_id": product_id})
    if res.deleted_count == 0:
        raise NotFoundError("Wishlist item")


def contains(db: Database, user_id: str, product_id: str) -> bool:
    return db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}) is not None


def move_to_cart(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    """Put one unit in the cart and drop the wishlist entry.

    A product already in the cart keeps its quantity; the entry is dropped
    either way.
    """
    product = get_product(db, product_id)
    pid = str(product["_id"])
    if not contains(db, user_id, pid):
        raise NotFoundError("Wishlist item")
    if int(product.get("stock", 0)) < 1:
        raise ProductUnavailableError(product.get("name", pid), pid)

    if db["cart"].find_one({"user_id": user_id, "product_id": pid}):
        message = "Already in cart, removed from wishlist"
    else:
        cart.add_item(db, user_id, pid, 1)
        message = "Moved to cart"
    db["wishlist"].delete_one({"user_id": user_id, "product_id": pid})
    logger.info("Wishlist item %s moved to cart for user %s", pid, user_id)
    return {"message": message, "cart_count": cart.count_items(db, user_id)}
