"""
MongoDB access for the Potions API.

A single MongoClient is opened at startup by the application lifespan and
shared by every request through the ``get_db`` dependency. Tests swap the
handle for a mongomock database via ``app.dependency_overrides``.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException, status
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "potions")

USER_COLLECTION = "user"
POTION_COLLECTION = "potion"

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    global client, db
    client = MongoClient(url or DATABASE_URL)
    db = client[name or DATABASE_NAME]
    # Fail at startup rather than on the first request
    client.admin.command("ping")
    return db


def close() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def ensure_indexes(database: Database) -> None:
    """Usernames are unique at the store level; duplicates raise DuplicateKeyError."""
    database[USER_COLLECTION].create_index([("username", ASCENDING)], unique=True)


def get_db() -> Database:
    if db is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not available",
        )
    return db


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace the ObjectId ``_id`` with a string ``id``."""
    if doc is None:
        return None
    out = {**doc}
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_unset=True)
    else:
        data_dict = data.copy()
    result = database[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return serialize(data_dict)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    return [serialize(doc) for doc in cursor]
