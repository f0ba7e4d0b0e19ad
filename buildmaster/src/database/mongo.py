"""
BuildMaster - MongoDB Client
=============================
Module-level async ``motor`` client shared by the knowledge and
conversation stores.  Created lazily on first use and re-used for the
life of the process (connection pooling is handled by the driver).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Mapping, TypeVar

import motor.motor_asyncio
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from buildmaster.config.settings import settings
from buildmaster.src.core.exceptions import PersistenceError
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value())
        logger.info("[MONGO] Async client created (singleton).")
    return _mongo_client


def get_database(name: str | None = None) -> motor.motor_asyncio.AsyncIOMotorDatabase:
    """Return the configured database handle."""
    return get_mongo_client()[name or settings.MONGO_DB_NAME]


def close_mongo_client() -> None:
    """Close the shared client (application shutdown)."""
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
        logger.info("[MONGO] Async client closed.")


# ── Document mapping ──────────────────────────────────────────────────

def to_object_id(value: str) -> ObjectId | None:
    """Parse a hex id; ``None`` when *value* is not a valid ObjectId."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def to_document(model: BaseModel) -> dict:
    """Dump a model to a MongoDB document (``id`` → ``_id``)."""
    doc = model.model_dump(exclude={"id"})
    model_id = getattr(model, "id", None)
    if model_id:
        doc["_id"] = ObjectId(model_id)
    return doc


def from_document(model_cls: type[ModelT], doc: Mapping) -> ModelT:
    """Build a model from a MongoDB document (``_id`` → ``id``)."""
    data = dict(doc)
    raw_id = data.pop("_id", None)
    data["id"] = str(raw_id) if raw_id is not None else None
    return model_cls.model_validate(data)


@contextmanager
def driver_errors(action: str) -> Iterator[None]:
    """Translate driver failures into ``PersistenceError``."""
    try:
        yield
    except PyMongoError as exc:
        logger.error("[MONGO] %s failed: %s", action, exc)
        raise PersistenceError(f"{action} failed: {exc}") from exc
