from __future__ import annotations
import logging
import os
from typing import Any, Optional
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic_settings import BaseSettings
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "dolce_seli")
    EXTRA_TOPPING_PRICE: float = 5.0
    LOG_LEVEL: str = "INFO"
    # Day boundary for daily order stats
    SHOP_TIMEZONE: str = "America/Mexico_City"

settings = Settings()

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        logger.info("Connecting to %s", settings.DATABASE_NAME)
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db

def _to_object_id(doc_id: str) -> Optional[ObjectId]:
    # ObjectId(None) would mint a fresh id
    if not isinstance(doc_id, str):
        return None
    try:
        return ObjectId(doc_id)
    except InvalidId:
        return None

def _with_id(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if doc and "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc

async def create_document(collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    db = await get_db()
    now = datetime.now(timezone.utc)
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return _with_id(inserted) or {}

async def get_documents(collection_name: str, filter_dict: dict[str, Any] | None = None, limit: int = 100, sort: list[tuple[str, int]] | None = None) -> list[dict[str, Any]]:
    db = await get_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    cursor = cursor.limit(limit)
    docs = []
    async for d in cursor:
        docs.append(_with_id(d))
    return docs

async def get_document(collection_name: str, doc_id: str) -> Optional[dict[str, Any]]:
    oid = _to_object_id(doc_id)
    if oid is None:
        return None
    db = await get_db()
    return _with_id(await db[collection_name].find_one({"_id": oid}))

async def update_document(collection_name: str, doc_id: str, changes: dict[str, Any]) -> Optional[dict[str, Any]]:
    # Plain field update; concurrent writers get last-write-wins
    oid = _to_object_id(doc_id)
    if oid is None:
        return None
    db = await get_db()
    result = await db[collection_name].update_one(
        {"_id": oid},
        {"$set": {**changes, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.matched_count == 0:
        return None
    return _with_id(await db[collection_name].find_one({"_id": oid}))

async def delete_document(collection_name: str, doc_id: str) -> bool:
    oid = _to_object_id(doc_id)
    if oid is None:
        return False
    db = await get_db()
    result = await db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0

async def count_documents(collection_name: str, filter_dict: dict[str, Any] | None = None) -> int:
    db = await get_db()
    return await db[collection_name].count_documents(filter_dict or {})
