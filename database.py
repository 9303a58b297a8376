"""
Database helpers

MongoDB access for the API. `db` is None when DATABASE_URL is not set so the
app can still boot and answer /health.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Union

from bson.objectid import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

import config
from errors import ServiceUnavailable, ValidationError

logger = logging.getLogger(__name__)

client = None
db = None

if config.DATABASE_URL:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]

USE_TRANSACTIONS = config.MONGO_TRANSACTIONS
TRANSACTION_ATTEMPTS = 5


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ServiceUnavailable("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def session_kwargs(session) -> dict:
    return {"session": session} if session is not None else {}


def start_session(database):
    return database.client.start_session()


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, PyMongoError) and exc.has_error_label("TransientTransactionError")


def _commit(session):
    for attempt in range(1, TRANSACTION_ATTEMPTS + 1):
        try:
            session.commit_transaction()
            return
        except PyMongoError as e:
            if attempt < TRANSACTION_ATTEMPTS and e.has_error_label("UnknownTransactionCommitResult"):
                logger.warning("Commit outcome unknown, retrying commit: %s", e)
                continue
            raise


def run_in_transaction(database, callback: Callable):
    """Run ``callback(session)`` inside a multi-document transaction and return its result.

    Commits when the callback returns and aborts when it raises. Errors labelled
    TransientTransactionError (e.g. a write conflict with a concurrent
    transaction) re-run the callback from the start, so it must read everything
    it decides on inside the session. A commit labelled
    UnknownTransactionCommitResult is retried on its own. The session is ended
    in every case.

    With transactions turned off the callback gets None and must leave no
    partial writes behind itself.
    """
    if not USE_TRANSACTIONS:
        return callback(None)
    with start_session(database) as session:
        for attempt in range(1, TRANSACTION_ATTEMPTS + 1):
            session.start_transaction()
            try:
                result = callback(session)
            except Exception as e:
                if session.in_transaction:
                    session.abort_transaction()
                if attempt < TRANSACTION_ATTEMPTS and _is_transient(e):
                    logger.warning("Transaction attempt %d conflicted, retrying: %s", attempt, e)
                    continue
                raise
            try:
                _commit(session)
            except PyMongoError as e:
                if attempt < TRANSACTION_ATTEMPTS and _is_transient(e):
                    logger.warning("Commit attempt %d conflicted, retrying: %s", attempt, e)
                    continue
                raise
            return result


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None, session=None) -> str:
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc, **session_kwargs(session))
    return str(result.inserted_id)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, list):
            doc[k] = [serialize_doc(i) if isinstance(i, dict) else i for i in v]
    return doc


def ensure_indexes(database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["category"].create_index([("key", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["address"].create_index([("user_id", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    database["search_history"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    logger.info("Database indexes ensured")
