"""
MongoDB access helpers.

The database handle is created once at startup by `connect()` and passed
around explicitly; nothing here keeps a module-level client.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings
from errors import ValidationError
from logging_config import get_logger

logger = get_logger("database")


def utcnow() -> datetime:
    # MongoDB keeps UTC without an offset; store and query naive UTC throughout
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def connect(settings: Settings, sleep=time.sleep) -> Database:
    """Open the store connection, retrying with a fixed backoff on failure."""
    last_error: Optional[Exception] = None
    for attempt in range(1, settings.db_connect_retries + 1):
        client = MongoClient(
            settings.database_url,
            serverSelectionTimeoutMS=settings.db_timeout_ms,
        )
        try:
            client.admin.command("ping")
            logger.info("Connected to MongoDB database %s", settings.database_name)
            return client[settings.database_name]
        except PyMongoError as exc:
            last_error = exc
            client.close()
            logger.warning(
                "Could not connect to MongoDB (attempt %d/%d): %s",
                attempt,
                settings.db_connect_retries,
                exc,
            )
            if attempt < settings.db_connect_retries:
                sleep(settings.db_retry_delay_sec)
    raise SystemExit(f"Refusing to start: MongoDB unreachable after retries ({last_error})")


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["grade"].create_index([("student_id", ASCENDING), ("subject_id", ASCENDING)], unique=True)
    db["task"].create_index([("creator_id", ASCENDING), ("due_date", ASCENDING)])
    db["message"].create_index([("subject_id", ASCENDING), ("created_at", ASCENDING)])
    db["alumni_message"].create_index(
        [("degree", ASCENDING), ("department", ASCENDING), ("created_at", ASCENDING)]
    )


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id format")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Turn a stored document into a JSON-ready dict (`_id` -> `id`, UTC ISO dates)."""
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    for k, v in list(d.items()):
        d[k] = _serialize_value(v)
    return d


def _serialize_value(v: Any) -> Any:
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).isoformat()
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, dict):
        return {k: _serialize_value(x) for k, x in v.items()}
    if isinstance(v, list):
        return [_serialize_value(x) for x in v]
    return v


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = {**data, "created_at": utcnow()}
    res = db[collection].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(
    db: Database,
    collection: str,
    query: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(query or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)
