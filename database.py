"""
Database helpers

Thin helpers over the MongoDB collections backing the store. Each record kind
in schemas.py lives in its own collection named after the lowercased class:
Product -> "product", SiteSettings -> "sitesettings".

Documents leave this module with a string "id" in place of "_id".
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient, DESCENDING

import config

logger = logging.getLogger("patrolstore.database")

client = MongoClient(config.DATABASE_URL)
db = client[config.DATABASE_NAME]

Document = Dict[str, Any]
SortSpec = List[Tuple[str, int]]

NEWEST_FIRST: SortSpec = [("created_date", DESCENDING)]


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[Document]) -> Optional[Document]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def _as_dict(data: Union[BaseModel, Document]) -> Document:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def collection_exists(collection_name: str) -> bool:
    return collection_name in db.list_collection_names()


def ensure_collection(collection_name: str) -> None:
    if not collection_exists(collection_name):
        db.create_collection(collection_name)
        logger.info("Created collection %s", collection_name)


def create_document(collection_name: str, data: Union[BaseModel, Document], doc_id: Optional[ObjectId] = None) -> str:
    stamp = now()
    payload = {**_as_dict(data), "created_date": stamp, "updated_date": stamp}
    payload.pop("id", None)
    if doc_id is not None:
        payload["_id"] = doc_id
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Document] = None,
                  sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Document]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def find_document(collection_name: str, filter_dict: Document) -> Optional[Document]:
    return serialize_doc(db[collection_name].find_one(filter_dict))


def get_document(collection_name: str, doc_id: Any) -> Optional[Document]:
    obj_id = parse_id(doc_id)
    if obj_id is None:
        return None
    return find_document(collection_name, {"_id": obj_id})


def update_document(collection_name: str, doc_id: Any, data: Union[BaseModel, Document]) -> bool:
    obj_id = parse_id(doc_id)
    if obj_id is None:
        return False
    update = {k: v for k, v in _as_dict(data).items() if k not in ("id", "_id", "created_date")}
    update["updated_date"] = now()
    res = db[collection_name].update_one({"_id": obj_id}, {"$set": update})
    return res.matched_count > 0


def delete_document(collection_name: str, doc_id: Any) -> bool:
    obj_id = parse_id(doc_id)
    if obj_id is None:
        return False
    res = db[collection_name].delete_one({"_id": obj_id})
    return res.deleted_count > 0


def upsert_singleton(collection_name: str, data: Union[BaseModel, Document]) -> Document:
    """Update the first row of a single-row table, or insert it when the table is empty."""
    existing = db[collection_name].find_one({})
    if existing:
        update_document(collection_name, existing["_id"], data)
        doc_id = existing["_id"]
    else:
        doc_id = parse_id(create_document(collection_name, data))
    return serialize_doc(db[collection_name].find_one({"_id": doc_id}))
