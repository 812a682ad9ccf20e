"""
MongoDB access helpers.

The client is built once in the application lifespan and handed to route
handlers through ``get_db``; nothing here keeps a module-level connection.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import Settings

logger = structlog.get_logger(__name__)


def connect(settings: Settings) -> Tuple[MongoClient, Database]:
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("mongo_client_created", database=settings.database_name)
    return client, client[settings.database_name]


def get_db(request: Request) -> Database:
    return request.app.state.db


def ensure_indexes(db: Database) -> None:
    """One order per payment provider reference.

    Sparse, so orders without the field (cash on delivery, the other
    provider) are not indexed.
    """
    db["order"].create_index("stripe_session_id", unique=True, sparse=True)
    db["order"].create_index("razorpay_order_id", unique=True, sparse=True)
    logger.info("mongo_indexes_ensured")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a client; malformed ids yield ``None``."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
