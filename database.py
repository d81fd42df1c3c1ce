"""
Omahring database helpers

A single MongoDB client is opened at import time. Collection names match the
lowercase schema class names in schemas.py (Product -> "product").
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "omahring")

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"{label} tidak valid.")
    return ObjectId(value)


def serialize(doc: Optional[Dict[str, Any]], hidden: tuple = ()) -> Optional[Dict[str, Any]]:
    """Turn a raw document into a JSON-friendly dict with an "id" field."""
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k not in hidden}
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out
