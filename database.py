"""
Database helpers for MongoDB

The connection is configured from DATABASE_URL and DATABASE_NAME. When either
is missing ``db`` stays None and every endpoint that needs the database
answers 500 "Database not configured".
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands datetimes back naive (in UTC); make them comparable with aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    now = utcnow()
    doc = {**data, "created_at": data.get("created_at") or now, "updated_at": now}
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["coupon"].create_index([("code", ASCENDING)], unique=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("uuid", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["address"].create_index([("user_id", ASCENDING)])


class UnitOfWork:
    """Groups several document updates so they take effect together or not at all.

    Every applied mutation registers its inverse with ``on_rollback``. Leaving
    the block with an exception runs the inverses newest first and re-raises;
    leaving it normally discards them.

        with UnitOfWork("place order") as uow:
            take_stock(...)
            uow.on_rollback(lambda: give_stock_back(...))

    This is compensation, not isolation: other requests can observe the
    intermediate writes, and a crash mid-block leaves them in place. On a
    replica set the upgrade path is ``client.start_session()`` with
    ``session.with_transaction(...)``, passing the session to every write.
    """

    def __init__(self, label: str):
        self.label = label
        self._undo: List[Callable[[], Any]] = []

    def on_rollback(self, action: Callable[[], Any]) -> None:
        self._undo.append(action)

    def rollback(self) -> None:
        while self._undo:
            action = self._undo.pop()
            try:
                action()
            except Exception:
                # keep undoing the rest; the original failure is re-raised by __exit__
                logger.exception("Rollback step failed during %s", self.label)

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            if self._undo:
                logger.warning("Rolling back %s after %s", self.label, exc_type.__name__)
            self.rollback()
        self._undo.clear()
        return False
