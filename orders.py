"""
Order lifecycle

Placement turns a cart into an order, cancellation gives the stock back.
Both group their writes in a UnitOfWork: if any step fails, the steps that
already ran are reversed before the error reaches the caller.

Status moves only along TRANSITIONS. Customers may cancel while an order is
pending or confirmed; the remaining moves belong to operators.
"""
import os
import re
import logging
import secrets
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from pymongo import ReturnDocument

import cart
import coupons
from catalog import decrement_stock, find_product, increment_stock
from database import UnitOfWork, utcnow
from errors import (
    ConflictError,
    CouponError,
    EmptyCartError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    ProductUnavailableError,
)
from pricing import price_line, subtotal_of, summarize
from schemas import Order, OrderItem, OrderStatus, ShippingAddress

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "MM")
ORDER_NUMBER_ATTEMPTS = 5
BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}
CANCELLABLE = [s.value for s, targets in TRANSITIONS.items() if OrderStatus.CANCELLED in targets]

TIMELINE = [
    (OrderStatus.PENDING, "Order Placed"),
    (OrderStatus.CONFIRMED, "Order Confirmed"),
    (OrderStatus.PROCESSING, "Processing"),
    (OrderStatus.SHIPPED, "Shipped"),
    (OrderStatus.DELIVERED, "Delivered"),
]
TIMELINE_STAGES = [stage for stage, _ in TIMELINE]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def ensure_transition(current: Any, target: Any) -> OrderStatus:
    try:
        current, target = OrderStatus(current), OrderStatus(target)
    except ValueError:
        raise InvalidTransitionError(str(current), str(target))
    if not can_transition(current, target):
        message = "Order cannot be cancelled" if target is OrderStatus.CANCELLED else None
        raise InvalidTransitionError(current.value, target.value, message)
    return target


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(now: Optional[datetime] = None) -> str:
    millis = int(now.timestamp() * 1000) if now else int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36) for _ in range(4))
    return f"{ORDER_NUMBER_PREFIX}{to_base36(millis)}{suffix}"


class OrderRef(BaseModel):
    """How a caller names an order: the shareable number or the opaque uuid."""

    kind: Literal["number", "uuid"]
    value: str

    @classmethod
    def parse(cls, raw: str) -> "OrderRef":
        raw = (raw or "").strip()
        try:
            return cls(kind="uuid", value=str(uuid.UUID(raw)))
        except ValueError:
            return cls(kind="number", value=raw.upper())

    def query(self) -> Dict[str, str]:
        field = "uuid" if self.kind == "uuid" else "order_number"
        return {field: self.value}


ORDER_NUMBER_RE = re.compile(r"^[0-9A-Z]+$")


def find_order(db: Database, user_id: str, ref: Any) -> dict:
    if not isinstance(ref, OrderRef):
        ref = OrderRef.parse(ref)
    if ref.kind == "number" and not ORDER_NUMBER_RE.match(ref.value):
        raise NotFoundError("Order")
    order = db["order"].find_one({**ref.query(), "user_id": user_id})
    if order is None:
        raise NotFoundError("Order")
    return order


def serialize_order(doc: dict) -> Dict[str, Any]:
    data = dict(doc)
    data.pop("_id", None)
    data["id"] = data["uuid"]
    return data


def _insert_order(db: Database, order: Order, now: datetime) -> dict:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        doc = {**order.model_dump(mode="json"), "created_at": now, "updated_at": now}
        try:
            db["order"].insert_one(doc)
            return doc
        except DuplicateKeyError:
            logger.warning("Order number %s already taken, regenerating", order.order_number)
            order.order_number = generate_order_number()
    raise ConflictError("Could not allocate an order number, please retry")


def place_order(
    db: Database,
    user_id: str,
    shipping_address: Optional[ShippingAddress],
    payment_method: Optional[str] = None,
    coupon_code: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if shipping_address is None:
        raise InvalidInputError("Shipping address is required")
    now = now or utcnow()

    lines = cart.get_lines(db, user_id)
    if not lines:
        raise EmptyCartError()

    priced = []
    for line in lines:
        product = find_product(db, line["product_id"])
        if product is None:
            raise ProductUnavailableError(line["product_id"], line["product_id"])
        if line["quantity"] > int(product.get("stock", 0)):
            raise ProductUnavailableError(product.get("name", line["product_id"]), str(product["_id"]))
        priced.append(price_line(product, int(line["quantity"]), now))

    quote = None
    if coupon_code:
        try:
            quote = coupons.resolve(db, coupon_code, subtotal_of(priced), now)
        except CouponError as exc:
            # checkout goes ahead at full price; the preview endpoint reports the reason
            logger.info("Ignoring coupon %s for user %s: %s", coupon_code, user_id, exc.message)

    with UnitOfWork("order placement") as uow:
        if quote is not None:
            if coupons.claim_usage(db, quote):
                uow.on_rollback(lambda q=quote: coupons.release_usage(db, q))
            else:
                quote = None

        breakdown = summarize(priced, quote.discount if quote else 0)

        for pl in priced:
            if not decrement_stock(db, pl.product_id, pl.quantity):
                logger.warning("Stock for %s ran out during checkout of user %s", pl.product_id, user_id)
                raise ConflictError(
                    f"{pl.product.get('name', pl.product_id)} sold out while placing the order",
                    product_id=pl.product_id,
                )
            uow.on_rollback(lambda pid=pl.product_id, qty=pl.quantity: increment_stock(db, pid, qty))

        order = Order(
            uuid=str(uuid.uuid4()),
            order_number=generate_order_number(now),
            user_id=user_id,
            items=[
                OrderItem(
                    product_id=pl.product_id,
                    name=pl.product.get("name", ""),
                    quantity=pl.quantity,
                    price=float(pl.unit_price),
                    total=float(pl.line_total),
                )
                for pl in priced
            ],
            subtotal=float(breakdown.subtotal),
            discount=float(breakdown.discount),
            shipping=float(breakdown.shipping),
            tax=float(breakdown.tax),
            total=float(breakdown.total),
            coupon_code=quote.code if quote else None,
            payment_method=payment_method or "cod",
            shipping_address=shipping_address,
            notes=notes,
        )
        doc = _insert_order(db, order, now)
        uow.on_rollback(lambda: db["order"].delete_one({"uuid": doc["uuid"]}))

        cart.remove_lines(db, lines)

    logger.info("Order %s placed by user %s, total %s", doc["order_number"], user_id, doc["total"])
    return {
        "order_id": doc["uuid"],
        "order_number": doc["order_number"],
        "total": doc["total"],
        "status": doc["status"],
    }


def get_order(db: Database, user_id: str, ref: Any) -> Dict[str, Any]:
    return serialize_order(find_order(db, user_id, ref))


def list_orders(db: Database, user_id: str, page: int = 1, limit: int = 10,
                status: Optional[str] = None) -> Dict[str, Any]:
    filter_q: Dict[str, Any] = {"user_id": user_id}
    if status:
        filter_q["status"] = status
    total = db["order"].count_documents(filter_q)
    cursor = (
        db["order"].find(filter_q)
        .sort([("created_at", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "orders": [serialize_order(doc) for doc in cursor],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


def cancel_order(db: Database, user_id: str, ref: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    order = find_order(db, user_id, ref)
    ensure_transition(order["status"], OrderStatus.CANCELLED)
    now = now or utcnow()

    with UnitOfWork("order cancellation") as uow:
        # only one of two concurrent cancels gets past this update
        flipped = db["order"].find_one_and_update(
            {"_id": order["_id"], "status": {"$in": CANCELLABLE}},
            {"$set": {"status": OrderStatus.CANCELLED.value, "updated_at": now}},
            return_document=ReturnDocument.BEFORE,
        )
        if flipped is None:
            current = db["order"].find_one({"_id": order["_id"]}) or order
            raise InvalidTransitionError(current["status"], OrderStatus.CANCELLED.value, "Order cannot be cancelled")
        uow.on_rollback(lambda: db["order"].update_one(
            {"_id": order["_id"]}, {"$set": {"status": flipped["status"], "updated_at": flipped.get("updated_at")}}
        ))

        for item in order.get("items", []):
            increment_stock(db, item["product_id"], item["quantity"])
            uow.on_rollback(lambda i=item: decrement_stock(db, i["product_id"], i["quantity"]))

    logger.info("Order %s cancelled by user %s", order["order_number"], user_id)
    return {"message": "Order cancelled successfully", "order_number": order["order_number"]}


def track_order(db: Database, user_id: str, ref: Any) -> Dict[str, Any]:
    order = find_order(db, user_id, ref)
    current = OrderStatus(order["status"])
    reached = TIMELINE_STAGES.index(current) if current in TIMELINE_STAGES else 0
    timeline = []
    for index, (stage, label) in enumerate(TIMELINE):
        entry = {"status": stage.value, "label": label, "completed": index <= reached}
        if stage is OrderStatus.PENDING:
            entry["date"] = order.get("created_at")
        timeline.append(entry)
    return {"current_status": current.value, "timeline": timeline}


def transition_order(db: Database, ref: Any, target: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Operator-driven status change. Cancellation goes through cancel_order for stock restore."""
    if not isinstance(ref, OrderRef):
        ref = OrderRef.parse(ref)
    order = db["order"].find_one(ref.query())
    if order is None:
        raise NotFoundError("Order")
    if OrderStatus(target) is OrderStatus.CANCELLED:
        return cancel_order(db, order["user_id"], ref, now)
    target = ensure_transition(order["status"], target)
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": {"status": target.value, "updated_at": now or utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Order status changed concurrently, reload and retry")
    logger.info("Order %s moved %s -> %s", order["order_number"], order["status"], target.value)
    return serialize_order(updated)
