"""
MongoDB access.

`db` is the active database handle. It stays None until `connect()` runs (at
application startup), and tests replace it with an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

import config

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None


def connect(url: Optional[str] = None, name: Optional[str] = None):
    """Open the client, ping the server and set the module-level `db`."""
    global client, db
    url = url or config.DATABASE_URL
    name = name or config.DATABASE_NAME
    if not url or not name:
        raise RuntimeError("DATABASE_URL and DATABASE_NAME must be set")
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    try:
        client.admin.command("ping")
    except PyMongoError:
        client.close()
        client = None
        raise
    db = client[name]
    db["user"].create_index("email", unique=True)
    db["order"].create_index("order_id", unique=True)
    db["order"].create_index("phone_number")
    logger.info("MongoDB connected (%s)", name)
    return db


def close():
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if db is None:
        raise RuntimeError("Database not available")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    if db is None:
        raise RuntimeError("Database not available")
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
