"""
MongoDB access helpers.

Collections used by AidLink:
- requests
- chats, chats.messages
- discussionBoards, discussionBoards.messages
- users, authcodes, sessions

Every write notifies the registered change listeners with the collection
name, which is how the live-query hub in realtime.py learns it has to
re-run its queries.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_URL
from errors import StoreError

logger = logging.getLogger(__name__)

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

SortSpec = Optional[Sequence[Tuple[str, int]]]

_change_listeners: List[Callable[[str], None]] = []


def add_change_listener(listener: Callable[[str], None]) -> None:
    if listener not in _change_listeners:
        _change_listeners.append(listener)


def _notify(collection_name: str) -> None:
    for listener in list(_change_listeners):
        try:
            listener(collection_name)
        except Exception:
            logger.exception("Change listener failed for collection %s", collection_name)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _collection(collection_name: str):
    if db is None:
        raise StoreError("Database not configured")
    return db[collection_name]


def object_id(doc_id: Any) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    try:
        return ObjectId(str(doc_id))
    except (InvalidId, TypeError):
        return None


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """Turn a store-native timestamp into a timezone-aware UTC datetime.

    pymongo hands back naive datetimes that are implicitly UTC; older
    documents may carry ISO strings or epoch seconds instead.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str):
        try:
            return normalize_timestamp(datetime.fromisoformat(value))
        except ValueError:
            return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def normalize_document(doc: dict) -> dict:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = normalize_timestamp(v)
    return d


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = _now()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    try:
        result = _collection(collection_name).insert_one(doc)
    except PyMongoError as e:
        logger.exception("Insert into %s failed", collection_name)
        raise StoreError(str(e)) from e
    _notify(collection_name)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: SortSpec = None,
) -> List[dict]:
    try:
        cursor = _collection(collection_name).find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return [normalize_document(d) for d in cursor]
    except PyMongoError as e:
        logger.exception("Query on %s failed", collection_name)
        raise StoreError(str(e)) from e


def find_document(collection_name: str, filter_dict: Dict[str, Any]) -> Optional[dict]:
    try:
        doc = _collection(collection_name).find_one(filter_dict)
    except PyMongoError as e:
        logger.exception("Lookup on %s failed", collection_name)
        raise StoreError(str(e)) from e
    return normalize_document(doc) if doc else None


def get_document(collection_name: str, doc_id: Any) -> Optional[dict]:
    oid = object_id(doc_id)
    if oid is None:
        return None
    return find_document(collection_name, {"_id": oid})


def update_document(collection_name: str, doc_id: Any, fields: Dict[str, Any]) -> bool:
    """Set ``fields`` on one document. Returns False when no document matched."""
    oid = object_id(doc_id)
    if oid is None:
        return False
    try:
        result = _collection(collection_name).update_one(
            {"_id": oid}, {"$set": {**fields, "updated_at": _now()}}
        )
    except PyMongoError as e:
        logger.exception("Update on %s/%s failed", collection_name, doc_id)
        raise StoreError(str(e)) from e
    if result.matched_count:
        _notify(collection_name)
    return result.matched_count > 0


def delete_documents(collection_name: str, filter_dict: Dict[str, Any]) -> int:
    try:
        result = _collection(collection_name).delete_many(filter_dict)
    except PyMongoError as e:
        logger.exception("Delete on %s failed", collection_name)
        raise StoreError(str(e)) from e
    if result.deleted_count:
        _notify(collection_name)
    return result.deleted_count


def list_collection_names() -> List[str]:
    if db is None:
        raise StoreError("Database not configured")
    return db.list_collection_names()
