"""
Database Helper Functions

MongoDB helpers shared by the API endpoints and the workflow engines.
The client is created once per process; every helper takes the database
handle explicitly so callers (and tests) decide which database they talk to.
"""

from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_URL, DATABASE_NAME

USERS = "users"
ROLE_REQUESTS = "roleRequests"
MEALS = "meals"
ORDERS = "orders"
REVIEWS = "reviews"
FAVORITES = "favorites"

NEWEST_FIRST = [("createdAt", DESCENDING)]

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    """Dependency that provides the shared database handle."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def ensure_indexes(database: Database) -> None:
    database[USERS].create_index("email", unique=True)
    database[FAVORITES].create_index([("userEmail", ASCENDING), ("foodId", ASCENDING)], unique=True)
    database[ORDERS].create_index("transactionId")
    database[ROLE_REQUESTS].create_index(
        [("userEmail", ASCENDING), ("requestType", ASCENDING), ("status", ASCENDING)]
    )


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True)
    return dict(data)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(_id: str) -> ObjectId:
    # raises bson.errors.InvalidId for malformed ids
    return ObjectId(_id)


# CRUD helpers

def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    payload = _to_dict(data)
    now = _now()
    payload["createdAt"] = now
    payload["updatedAt"] = now
    result = database[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    projection: Optional[dict] = None,
    sort: Optional[list] = None,
    skip: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(int(skip))
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_document(database: Database, collection_name: str, filter_dict: dict) -> Optional[dict]:
    doc = database[collection_name].find_one(filter_dict)
    return serialize_doc(doc) if doc else None


def get_document_by_id(database: Database, collection_name: str, _id: str) -> Optional[dict]:
    return get_document(database, collection_name, {"_id": parse_object_id(_id)})


def update_document(database: Database, collection_name: str, filter_dict: dict, update_data: Union[BaseModel, Dict[str, Any]]) -> int:
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updatedAt"] = _now()
    result = database[collection_name].update_one(filter_dict, update)
    return result.modified_count


def update_document_by_id(database: Database, collection_name: str, _id: str, update_data: Union[BaseModel, Dict[str, Any]]) -> int:
    return update_document(database, collection_name, {"_id": parse_object_id(_id)}, update_data)


def delete_document(database: Database, collection_name: str, filter_dict: dict) -> int:
    result = database[collection_name].delete_one(filter_dict)
    return result.deleted_count


def count_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None) -> int:
    return database[collection_name].count_documents(filter_dict or {})


# Utility


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
