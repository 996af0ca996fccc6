"""MongoDB handler for claim records.

A thin wrapper over one database that hides connection management and
error handling. Methods never raise driver errors: failures are logged
and reported as ``None`` (or an empty result), and callers decide how to
escalate.

Example usage:
    from claims_backend.db.mongodb_handler import MongoDBHandler

    with MongoDBHandler() as handler:
        report_id = handler.insert_one("reports", {"report_number": "RPT-..."})
        handler.insert_many("damage_details", [{"report_id": report_id, "part": "hood"}])
        report = handler.find_by_id("reports", report_id)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, DuplicateKeyError, ServerSelectionTimeoutError

from claims_backend.config import MONGODB_DB_NAME, MONGODB_URI

LOG = logging.getLogger(__name__)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stringify_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


class MongoDBHandler:
    """Handler for MongoDB reads and writes across the claim collections."""

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        timeout_seconds: int = 30,
        auto_connect: bool = True,
    ):
        """Initialize the handler.

        Args:
            uri: MongoDB connection string. Reads MONGODB_URI if None.
            db_name: Database name. Defaults to 'claims_intake'.
            timeout_seconds: Connection timeout in seconds.
            auto_connect: Whether to connect on initialization.

        Raises:
            ValueError: If no URI is given and MONGODB_URI is not set.
        """
        self.uri = uri or MONGODB_URI
        self.db_name = db_name or MONGODB_DB_NAME
        self.timeout_seconds = timeout_seconds

        self._client: Optional[MongoClient] = None
        self._db: Optional[Database] = None
        self._is_connected = False

        if not self.uri:
            raise ValueError(
                "MongoDB URI must be provided or set in MONGODB_URI environment variable"
            )

        if auto_connect:
            self.connect()

    def connect(self) -> bool:
        """Connect and ping. Returns True on success."""
        try:
            self._client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.timeout_seconds * 1000,
                connectTimeoutMS=self.timeout_seconds * 1000,
                retryWrites=True,
                maxPoolSize=10,
                minPoolSize=1,
            )
            self._client.admin.command("ping")
            self._db = self._client[self.db_name]
            self._is_connected = True
            LOG.info("Connected to MongoDB database %s", self.db_name)
            return True
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            LOG.error("MongoDB connection failed: %s", e)
            self._is_connected = False
            return False

    def disconnect(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
            self._is_connected = False
            LOG.info("Disconnected from MongoDB")

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    def _ensure_connected(self) -> bool:
        if not self._is_connected:
            LOG.warning("Handler not connected. Attempting to reconnect...")
            return self.connect()
        return True

    def collection(self, name: str):
        if self._db is None:
            raise RuntimeError("MongoDB database is not initialised")
        return self._db[name]

    # ==================== INSERT OPERATIONS ====================

    def insert_one(self, collection: str, document: Dict[str, Any]) -> Optional[str]:
        """Insert one document and return its id, or None on failure."""
        if not self._ensure_connected():
            LOG.error("Cannot insert into %s: not connected to MongoDB", collection)
            return None

        try:
            doc = dict(document)
            doc.setdefault("created_at", _utc_iso())
            result = self.collection(collection).insert_one(doc)
            inserted_id = str(result.inserted_id)
            LOG.debug("Inserted %s into %s", inserted_id, collection)
            return inserted_id
        except DuplicateKeyError as e:
            LOG.error("Duplicate key in %s: %s", collection, e)
            return None
        except Exception as e:
            LOG.error("Failed to insert into %s: %s", collection, e)
            return None

    def insert_many(self, collection: str, documents: List[Dict[str, Any]]) -> Optional[List[str]]:
        """Insert several documents. An empty list is a no-op returning []."""
        if not documents:
            return []
        if not self._ensure_connected():
            LOG.error("Cannot insert into %s: not connected to MongoDB", collection)
            return None

        try:
            now = _utc_iso()
            docs = [{"created_at": now, **doc} for doc in documents]
            result = self.collection(collection).insert_many(docs)
            inserted_ids = [str(id_) for id_ in result.inserted_ids]
            LOG.debug("Inserted %d documents into %s", len(inserted_ids), collection)
            return inserted_ids
        except Exception as e:
            LOG.error("Failed to insert documents into %s: %s", collection, e)
            return None

    # ==================== READ OPERATIONS ====================

    def find_one(self, collection: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self._ensure_connected():
            LOG.error("Cannot query %s: not connected to MongoDB", collection)
            return None

        try:
            result = self.collection(collection).find_one(query)
            return _stringify_id(result) if result else None
        except Exception as e:
            LOG.error("Failed to query %s: %s", collection, e)
            return None

    def find_by_id(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            object_id = ObjectId(document_id)
        except (InvalidId, TypeError):
            LOG.debug("Invalid document id %r", document_id)
            return None
        return self.find_one(collection, {"_id": object_id})

    def find_all(
        self,
        collection: str,
        query: Dict[str, Any],
        sort_field: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if not self._ensure_connected():
            LOG.error("Cannot query %s: not connected to MongoDB", collection)
            return []

        try:
            cursor = self.collection(collection).find(query)
            if sort_field:
                cursor = cursor.sort(sort_field, ASCENDING)
            return [_stringify_id(doc) for doc in cursor]
        except Exception as e:
            LOG.error("Failed to query %s: %s", collection, e)
            return []

    # ==================== DELETE OPERATIONS ====================

    def delete_by_id(self, collection: str, document_id: str) -> Optional[int]:
        if not self._ensure_connected():
            LOG.error("Cannot delete from %s: not connected to MongoDB", collection)
            return None

        try:
            result = self.collection(collection).delete_one({"_id": ObjectId(document_id)})
            return result.deleted_count
        except Exception as e:
            LOG.error("Failed to delete %s from %s: %s", document_id, collection, e)
            return None

    def delete_many(self, collection: str, query: Dict[str, Any]) -> Optional[int]:
        if not self._ensure_connected():
            LOG.error("Cannot delete from %s: not connected to MongoDB", collection)
            return None

        try:
            result = self.collection(collection).delete_many(query)
            return result.deleted_count
        except Exception as e:
            LOG.error("Failed to delete from %s: %s", collection, e)
            return None

    # ==================== CONTEXT MANAGER ====================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


__all__ = ["MongoDBHandler"]
