"""
Document store access.

A single ``DocumentStore`` owns the Mongo client for the whole process. It is
constructed by the application factory, ``init()``-ed on startup and
``close()``-d on shutdown, and handed to every service that needs it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
PRODUCTS = "products"
VARIANTS = "product_variants"
SELLER_PROFILES = "seller_profiles"
REVIEWS = "reviews"
ORDERS = "orders"
CART_ITEMS = "cart_items"
IMAGES = "images"


def id_filter(value: str) -> Dict[str, Any]:
    """Match a document by its string ``id`` or, when it parses as one, its ObjectId."""
    if ObjectId.is_valid(value):
        return {"$or": [{"id": value}, {"_id": ObjectId(value)}]}
    return {"id": value}


def ids_filter(values: Iterable[str]) -> Dict[str, Any]:
    values = list(dict.fromkeys(v for v in values if v))
    object_ids = [ObjectId(v) for v in values if ObjectId.is_valid(v)]
    if not object_ids:
        return {"id": {"$in": values}}
    return {"$or": [{"id": {"$in": values}}, {"_id": {"$in": object_ids}}]}


class DocumentStore:
    def __init__(self, url: str = DATABASE_URL, name: str = DATABASE_NAME, client: Optional[MongoClient] = None):
        self.url = url
        self.name = name
        self._client = client
        self.db = None

    def init(self) -> "DocumentStore":
        if self.db is not None:
            return self
        if self._client is None:
            self._client = MongoClient(self.url)
        self.db = self._client[self.name]
        # one row per (user, variant); backs the $inc upsert in the cart
        self.db[CART_ITEMS].create_index([("userId", ASCENDING), ("variantId", ASCENDING)], unique=True)
        logger.info("Document store ready: %s", self.name)
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("Document store closed")
        self._client = None
        self.db = None

    def __getitem__(self, collection_name: str) -> Collection:
        if self.db is None:
            raise RuntimeError("DocumentStore.init() has not been called")
        return self.db[collection_name]

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True, exclude_none=True)
        doc = dict(data)
        oid = ObjectId()
        doc["_id"] = oid
        doc["id"] = doc.get("id") or str(oid)
        doc.setdefault("createdAt", datetime.now(timezone.utc))
        self[collection_name].insert_one(doc)
        return doc["id"]

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                      limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
        cursor = self[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_by_id(self, collection_name: str, value: Optional[str]) -> Optional[Dict[str, Any]]:
        if not value:
            return None
        collection = self[collection_name]
        doc = collection.find_one({"id": value})
        if doc is None and ObjectId.is_valid(value):
            doc = collection.find_one({"_id": ObjectId(value)})
        return doc

    def collection_names(self) -> List[str]:
        if self.db is None:
            raise RuntimeError("DocumentStore.init() has not been called")
        return self.db.list_collection_names()
