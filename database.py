"""
MongoDB access layer.

``db`` is the process-wide database handle, created from DATABASE_URL/DATABASE_NAME
at import time (None when unconfigured). Route handlers receive it through the
``get_db`` dependency so tests can swap in another handle.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

import config
from errors import AppException

logger = logging.getLogger(__name__)

db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise AppException(status_code=500, error_code="database_unavailable", message="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId, None]) -> Optional[ObjectId]:
    """Parse an id; returns None for anything that is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort: Optional[list] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(database: Database, collection_name: str, doc_id: ObjectId, changes: dict) -> Optional[dict]:
    changes = {**changes, "updated_at": utcnow()}
    return database[collection_name].find_one_and_update(
        {"_id": doc_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def serialize_doc(doc: Optional[dict], exclude: tuple = ()) -> Optional[Dict[str, Any]]:
    """Turn a stored document into JSON-friendly output (``_id`` -> ``id``, ObjectIds as str)."""
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k in exclude:
            continue
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, list):
            out[k] = [str(i) if isinstance(i, ObjectId) else i for i in v]
        else:
            out[k] = v
    return out


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("seller_slug", ASCENDING)], unique=True, sparse=True)
    database["user"].create_index([("role", ASCENDING)])

    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["product"].create_index([("seller_id", ASCENDING), ("status", ASCENDING)])
    database["product"].create_index([("category", ASCENDING), ("status", ASCENDING)])
    database["product"].create_index([("created_at", DESCENDING)])

    database["purchase"].create_index([("download_token", ASCENDING)], unique=True)
    database["purchase"].create_index([("payment_session_id", ASCENDING)], unique=True)
    database["purchase"].create_index([("buyer_id", ASCENDING), ("created_at", DESCENDING)])
    database["purchase"].create_index([("seller_id", ASCENDING), ("created_at", DESCENDING)])

    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("is_approved", ASCENDING)])

    database["upload"].create_index([("key", ASCENDING)], unique=True)
    logger.info("Database indexes ensured")
