import logging
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING

from errors import NotFoundError
from settings import DATABASE_URL, DATABASE_NAME

DONATIONS = "donations"
DONATION_REQUESTS = "donation_requests"
USERS = "users"
FAVORITES = "favorites"
REVIEWS = "reviews"
CHARITY_ROLE_REQUESTS = "charity_role_requests"
TRANSACTIONS = "transactions"

_client: AsyncIOMotorClient | None = None
_db = None


async def get_db():
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(DATABASE_URL)
        _db = _client[DATABASE_NAME]
        logging.info("Connected to MongoDB database %s", DATABASE_NAME)
    return _db


async def ensure_indexes(db):
    # Uniqueness rules live in the database so concurrent inserts cannot both pass.
    await db[DONATION_REQUESTS].create_index(
        [("donation_id", ASCENDING), ("charity_email", ASCENDING)], unique=True
    )
    await db[USERS].create_index("email", unique=True)
    await db[FAVORITES].create_index([("user_email", ASCENDING), ("donation_id", ASCENDING)], unique=True)
    await db[REVIEWS].create_index([("reviewer_email", ASCENDING), ("donation_id", ASCENDING)], unique=True)
    await db[CHARITY_ROLE_REQUESTS].create_index("email", unique=True)
    await db[TRANSACTIONS].create_index("transaction_id", unique=True)


def utcnow():
    return datetime.now(timezone.utc)


def to_object_id(value: str, what: str = "Resource") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found")


def normalize_id(value: str, what: str = "Resource") -> str:
    """Canonical string form of an id, so that 'ABC..' and 'abc..' key the same record."""
    return str(to_object_id(value, what))


def serialize(doc: dict | None):
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    out["id"] = str(doc["_id"])
    return out


async def create_document(db, collection_name: str, data: dict):
    now = utcnow()
    data["created_at"] = now
    data["updated_at"] = now
    res = await db[collection_name].insert_one(data)
    data["_id"] = res.inserted_id
    return data


async def get_documents(db, collection_name: str, filter_dict: dict | None = None, limit: int | None = None,
                        sort_field: str = "created_at"):
    cursor = db[collection_name].find(filter_dict or {}).sort(sort_field, -1)
    if limit:
        cursor = cursor.limit(limit)
    return [doc async for doc in cursor]
