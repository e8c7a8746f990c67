"""
MongoDB access for the Smart Health Vault API

Exposes the module-level `db` handle plus small helpers shared by the
services. Collection names are the lowercase of the schema class name.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Config

logger = logging.getLogger(__name__)

client: MongoClient = MongoClient(Config.DATABASE_URL, tz_aware=False)
db: Database = client[Config.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency; overridden in tests."""
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("firebaseUid", unique=True)
    database["user"].create_index("email", unique=True)
    database["emergencyprofile"].create_index("userId", unique=True)
    database["emergencyprofile"].create_index("qrCode.hash", unique=True, sparse=True)
    database["reminder"].create_index(
        [("userId", ASCENDING), ("scheduledFor", ASCENDING), ("status", ASCENDING)]
    )
    database["medicalrecord"].create_index([("userId", ASCENDING), ("dateOfRecord", ASCENDING)])


def _to_document(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    return dict(data)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping createdAt/updatedAt. Returns the new id as a string."""
    doc = _to_document(data)
    now = datetime.utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def object_id(value: Any) -> Optional[ObjectId]:
    """Parse a path parameter into an ObjectId, or None when it is malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(value: Any) -> Any:
    """Convert ObjectIds (at any depth) to strings so documents can be returned as JSON."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value
