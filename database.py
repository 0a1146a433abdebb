"""
Database access

MongoDB connection plus thin per-collection stores. Documents are stored with
snake_case keys following the models in ``schemas.py``; the stores only read
and write documents and never shape API responses.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

db: Optional[Database] = None
if _settings.database_url:
    _client = MongoClient(_settings.database_url, tz_aware=True)
    db = _client[_settings.database_name]


def get_database() -> Optional[Database]:
    return db


def to_object_id(value: str) -> Optional[ObjectId]:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document with timestamps and return its id as a string."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database: Database) -> None:
    logger.info("Ensuring indexes on %s", database.name)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("google_id", ASCENDING)], unique=True, sparse=True)
    database["product"].create_index([("vendor_id", ASCENDING), ("created_at", DESCENDING)])
    database["password_reset"].create_index([("email", ASCENDING)], unique=True)


class UserStore:
    def __init__(self, database: Database):
        self.db = database
        self.collection = database["user"]

    def get_by_id(self, user_id: str) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def get_by_email(self, email: str) -> Optional[dict]:
        return self.collection.find_one({"email": email})

    def get_many(self, user_ids: Iterable[str]) -> Dict[str, dict]:
        oids = [oid for oid in (to_object_id(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        return {str(u["_id"]): u for u in self.collection.find({"_id": {"$in": oids}})}

    def create(self, user: BaseModel) -> dict:
        user_id = create_document("user", user, self.db)
        return self.get_by_id(user_id)

    def update(self, user_id: str, fields: dict) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        res = self.collection.update_one(
            {"_id": oid}, {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}}
        )
        if res.matched_count == 0:
            return None
        return self.collection.find_one({"_id": oid})


class ProductStore:
    def __init__(self, database: Database):
        self.db = database
        self.collection = database["product"]

    def get(self, product_id: str) -> Optional[dict]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find(self, query: dict) -> List[dict]:
        return list(self.collection.find(query).sort("created_at", DESCENDING))

    def create(self, product: BaseModel) -> dict:
        product_id = create_document("product", product, self.db)
        return self.get(product_id)

    def update(self, product_id: str, fields: dict) -> Optional[dict]:
        oid = to_object_id(product_id)
        res = self.collection.update_one(
            {"_id": oid}, {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}}
        )
        if res.matched_count == 0:
            return None
        return self.collection.find_one({"_id": oid})

    def delete(self, product_id: str) -> bool:
        res = self.collection.delete_one({"_id": to_object_id(product_id)})
        return res.deleted_count > 0


class ResetCodeStore:
    """One pending password reset per email; a new request replaces the old one."""

    def __init__(self, database: Database):
        self.collection = database["password_reset"]

    def save(self, reset: BaseModel) -> None:
        doc = reset.model_dump()
        doc["created_at"] = datetime.now(timezone.utc)
        self.collection.update_one({"email": doc["email"]}, {"$set": doc}, upsert=True)

    def get(self, email: str) -> Optional[dict]:
        return self.collection.find_one({"email": email})

    def record_failure(self, email: str) -> None:
        self.collection.update_one({"email": email}, {"$inc": {"failed_attempts": 1}})

    def delete(self, email: str) -> None:
        self.collection.delete_one({"email": email})
