"""
Document store adapter over MongoDB.

Collections (lowercase entity names):
- user
- book
- reservation

Every entity-scoped read goes through ``active()`` so that soft-deleted
documents (``habilitado: false``) stay hidden unless a caller opts out.
Driver errors are translated to the typed failures in ``errors``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from config import settings
from errors import DuplicateKey, LibraryError, StoreUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

USERS = "user"
BOOKS = "book"
RESERVATIONS = "reservation"


def parse_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationFailed(f"Identificador inválido: {label}")


def active(query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return ``query`` restricted to enabled documents."""
    scoped = dict(query or {})
    scoped["habilitado"] = True
    return scoped


def to_str_id(doc: Dict[str, Any]):
    if not doc:
        return doc
    doc["id"] = str(doc.get("_id"))
    doc.pop("_id", None)
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
        elif isinstance(value, dict) and "_id" in value:
            to_str_id(value)
    return doc


def _now() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _driver_errors():
    try:
        yield
    except DuplicateKeyError as e:
        logger.info("Duplicate key rejected: %s", e)
        raise DuplicateKey("El correo ya está registrado")
    except ConnectionFailure as e:
        logger.error("Document store unreachable: %s", e)
        raise StoreUnavailable()
    except PyMongoError:
        logger.exception("Unexpected document store error")
        raise LibraryError()


class Store:
    """Thin CRUD + query layer over one MongoDB database."""

    def __init__(self, db: Database):
        self.db = db

    def _scope(self, query: Dict[str, Any], active_only: bool) -> Dict[str, Any]:
        return active(query) if active_only else dict(query)

    def find_one(self, collection: str, query: Dict[str, Any], active_only: bool = True) -> Optional[Dict[str, Any]]:
        with _driver_errors():
            return self.db[collection].find_one(self._scope(query, active_only))

    def find_by_id(self, collection: str, doc_id: Any, active_only: bool = True) -> Optional[Dict[str, Any]]:
        return self.find_one(collection, {"_id": parse_id(doc_id)}, active_only=active_only)

    def find(
        self,
        collection: str,
        query: Dict[str, Any],
        active_only: bool = True,
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with _driver_errors():
            cursor = self.db[collection].find(self._scope(query, active_only), projection)
            if sort:
                cursor = cursor.sort(sort, ASCENDING)
            return list(cursor)

    def insert(self, collection: str, doc: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        data = doc.model_dump(by_alias=True) if isinstance(doc, BaseModel) else dict(doc)
        data["created_at"] = _now()
        data["updated_at"] = _now()
        with _driver_errors():
            result = self.db[collection].insert_one(data)
        data["_id"] = result.inserted_id
        return data

    def update_where(self, collection: str, query: Dict[str, Any], fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Conditionally ``$set`` fields on the first match; None when nothing matched."""
        update = dict(fields)
        update["updated_at"] = _now()
        with _driver_errors():
            return self.db[collection].find_one_and_update(
                query,
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )

    def update_by_id(
        self,
        collection: str,
        doc_id: Any,
        fields: Dict[str, Any],
        active_only: bool = True,
    ) -> Optional[Dict[str, Any]]:
        query = self._scope({"_id": parse_id(doc_id)}, active_only)
        return self.update_where(collection, query, fields)

    def populate(
        self,
        docs: List[Dict[str, Any]],
        field: str,
        collection: str,
        fields: List[str],
    ) -> List[Dict[str, Any]]:
        """Replace the ObjectId in ``doc[field]`` by a summary of the referenced document."""
        ids = list({d[field] for d in docs if d.get(field) is not None})
        projection = {name: 1 for name in fields}
        with _driver_errors():
            refs = {r["_id"]: r for r in self.db[collection].find({"_id": {"$in": ids}}, projection)}
        for d in docs:
            d[field] = refs.get(d.get(field))
        return docs

    def delete_many(self, collection: str, query: Dict[str, Any]) -> int:
        # maintenance only: entities are soft-deleted through update_by_id
        with _driver_errors():
            return self.db[collection].delete_many(query).deleted_count

    def ping(self) -> None:
        with _driver_errors():
            self.db.command("ping")

    def ensure_indexes(self) -> None:
        with _driver_errors():
            self.db[USERS].create_index("correo", unique=True)
            self.db[RESERVATIONS].create_index("libro")
            self.db[RESERVATIONS].create_index("usuario")


_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(
            settings.database_url,
            serverSelectionTimeoutMS=settings.database_timeout_ms,
        )
    return _client


def get_store() -> Store:
    return Store(get_client()[settings.database_name])
