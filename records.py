"""Medical record uploads and metadata."""
import logging
import math
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, get_args

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from config import Config
from database import create_document, object_id
from gateways import BlobStore
from schemas import MedicalRecord, MedicalRecordUpdate, RecordCategory, parse_datetime

logger = logging.getLogger(__name__)

COLLECTION = "medicalrecord"


class RecordValidationError(ValueError):
    pass


def _parse_date(value: Any, field: str) -> datetime:
    try:
        return parse_datetime(value, field)
    except ValueError as e:
        raise RecordValidationError(str(e))


def validate_upload(file_name: Optional[str], content_type: Optional[str], size: int, category: Optional[str] = None) -> None:
    if not file_name:
        raise RecordValidationError("No file uploaded")
    if size > Config.MAX_UPLOAD_SIZE:
        raise RecordValidationError("File too large (max 10MB)")
    extension = os.path.splitext(file_name)[1].lower()
    if extension not in Config.ALLOWED_UPLOAD_EXTENSIONS or content_type not in Config.ALLOWED_UPLOAD_MIMETYPES:
        raise RecordValidationError("Only PDF and image files are allowed")
    if category and category not in get_args(RecordCategory):
        raise RecordValidationError(f"Invalid category: {category}")


def upload_record(
    db: Database,
    store: BlobStore,
    user: Dict[str, Any],
    data: bytes,
    file_name: str,
    content_type: Optional[str],
    title: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
    date_of_record: Optional[str] = None,
    tags: Optional[str] = None,
) -> Dict[str, Any]:
    validate_upload(file_name, content_type, len(data), category)
    record_date = _parse_date(date_of_record, "dateOfRecord") if date_of_record else datetime.utcnow()
    # Storage errors propagate so the caller can surface the provider's message
    uploaded = store.upload(data, file_name, content_type, owner_id=str(user["_id"]))
    logger.info(f"Stored {file_name} ({uploaded.size} bytes) via {store.name}")

    record = MedicalRecord(
        user_id=user["_id"],
        title=title or file_name,
        description=description,
        category=category or "Other",
        file_url=uploaded.url,
        file_name=uploaded.file_name,
        file_size=uploaded.size,
        file_type=uploaded.type,
        date_of_record=record_date,
        tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else [],
    )
    record_id = create_document(db, COLLECTION, record)
    return db[COLLECTION].find_one({"_id": object_id(record_id)})


def list_records(
    db: Database,
    user: Dict[str, Any],
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"userId": user["_id"]}
    if category:
        query["category"] = category
    if start_date or end_date:
        query["dateOfRecord"] = {}
        if start_date:
            query["dateOfRecord"]["$gte"] = _parse_date(start_date, "startDate")
        if end_date:
            query["dateOfRecord"]["$lte"] = _parse_date(end_date, "endDate")
    if tag:
        query["tags"] = tag

    page = max(page, 1)
    limit = max(limit, 1)
    records: List[Dict[str, Any]] = list(
        db[COLLECTION].find(query).sort("dateOfRecord", DESCENDING).skip((page - 1) * limit).limit(limit)
    )
    total = db[COLLECTION].count_documents(query)
    return {
        "records": records,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


def update_record(db: Database, user: Dict[str, Any], record_id: str, data: MedicalRecordUpdate) -> Optional[Dict[str, Any]]:
    _id = object_id(record_id)
    if _id is None:
        return None
    changes = data.model_dump(by_alias=True, exclude_none=True)
    changes["updatedAt"] = datetime.utcnow()
    return db[COLLECTION].find_one_and_update(
        {"_id": _id, "userId": user["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


def delete_record(db: Database, user: Dict[str, Any], record_id: str) -> bool:
    _id = object_id(record_id)
    if _id is None:
        return False
    # TODO: remove the stored blob as well once BlobStore grows a delete()
    return db[COLLECTION].find_one_and_delete({"_id": _id, "userId": user["_id"]}) is not None
