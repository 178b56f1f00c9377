"""
MongoDB access for the marketplace backend.

The connection is configured from DATABASE_URL / DATABASE_NAME. Collections are
named after the schema classes in schemas.py, lowercased.
"""
import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import DatabaseUnavailableFault, NotFoundFault, ValidationFault

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db():
    if db is None:
        raise DatabaseUnavailableFault()
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def transactions_enabled() -> bool:
    return os.getenv("MONGO_TRANSACTIONS", "").lower() in ("1", "true", "yes")


@contextmanager
def transaction():
    """Yield a session bound to an open transaction, or None.

    Multi-document transactions need a replica set, so they are opt-in via
    MONGO_TRANSACTIONS. Callers always pass the yielded value as ``session=``;
    with None every write is a single-document atomic operation and the caller
    is responsible for compensating on failure.
    """
    if not transactions_enabled() or client is None:
        yield None
        return
    with client.start_session() as session:
        with session.start_transaction():
            yield session


def create_document(collection_name: str, data, session=None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = get_db()[collection_name].insert_one(data_dict, session=session)
    data_dict["_id"] = result.inserted_id
    return str(result.inserted_id)


def ensure_indexes():
    """Create the indexes the order engine relies on for uniqueness."""
    database = get_db()
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("items.seller_id", ASCENDING), ("status", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index(
        [("user_id", ASCENDING), ("idempotency_key", ASCENDING)],
        unique=True,
        partialFilterExpression={"idempotency_key": {"$type": "string"}},
    )
    database["cart"].create_index("user_id", unique=True)
    database["seller"].create_index("user_id", unique=True)
    database["seller"].create_index("store_name", unique=True)
    database["product"].create_index([("seller_id", ASCENDING), ("status", ASCENDING), ("archived", ASCENDING)])
    database["address"].create_index([("user_id", ASCENDING), ("is_default", DESCENDING)])
    logger.info("Database indexes ensured")


def to_obj_id(id_str: str, not_found_message: Optional[str] = None) -> ObjectId:
    """Parse a string id; a malformed id is a 400, or a 404 when a message is given."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        if not_found_message:
            raise NotFoundFault(not_found_message)
        raise ValidationFault("Invalid id")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc
