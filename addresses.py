"""
Address book

Saved shipping addresses. Order placement copies the chosen entry into the
order, so editing or deleting an address later never changes past orders.
At most one entry per user is the default.
"""
from typing import Any, Dict, List

from pydantic import ValidationError
from pymongo.database import Database

from catalog import parse_object_id
from database import create_document, utcnow
from errors import InvalidInputError, NotFoundError
from schemas import Address, ShippingAddress


def _serialize(doc: dict) -> Dict[str, Any]:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return data


def _find(db: Database, user_id: str, address_id: str) -> dict:
    oid = parse_object_id(address_id)
    doc = db["address"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if doc is None:
        raise NotFoundError("Address")
    return doc


def _clear_default(db: Database, user_id: str) -> None:
    db["address"].update_many({"user_id": user_id, "is_default": True}, {"$set": {"is_default": False}})


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["address"].find({"user_id": user_id}).sort([("is_default", -1), ("created_at", -1)])
    return [_serialize(doc) for doc in cursor]


def get_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    return _serialize(_find(db, user_id, address_id))


def add_address(db: Database, user_id: str, fields: Dict[str, Any]) -> str:
    try:
        address = Address(**fields, user_id=user_id)
    except ValidationError as exc:
        raise InvalidInputError("All address fields are required", errors=exc.errors(include_context=False))
    if address.is_default:
        _clear_default(db, user_id)
    return create_document(db, "address", address)


def update_address(db: Database, user_id: str, address_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial update; omitted fields keep their stored values."""
    doc = _find(db, user_id, address_id)
    merged = {k: v for k, v in doc.items() if k in Address.model_fields}
    merged.update({k: v for k, v in changes.items() if v is not None})
    try:
        address = Address(**merged)
    except ValidationError as exc:
        raise InvalidInputError("Invalid address", errors=exc.errors(include_context=False))
    if address.is_default and not doc.get("is_default"):
        _clear_default(db, user_id)
    db["address"].update_one(
        {"_id": doc["_id"]}, {"$set": {**address.model_dump(), "updated_at": utcnow()}}
    )
    return get_address(db, user_id, address_id)


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    oid = parse_object_id(address_id)
    res = db["address"].delete_one({"_id": oid, "user_id": user_id}) if oid else None
    if res is None or res.deleted_count == 0:
        raise NotFoundError("Address")


def snapshot(db: Database, user_id: str, address_id: str) -> ShippingAddress:
    """The shipping address an order stores: a copy, detached from the book."""
    return ShippingAddress.model_validate(_find(db, user_id, address_id))
