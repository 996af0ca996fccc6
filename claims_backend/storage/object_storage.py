"""Object storage for uploaded media and policy documents.

``GridFSObjectStorage`` keeps blobs in a MongoDB GridFS bucket. The
pymongo driver is blocking, so every call is pushed to a worker thread
with ``asyncio.to_thread`` to keep the event loop free.

Env vars
--------
MONGODB_URI : str
    Required by the GridFS adapter.
MONGODB_DB : str
    Database name (default ``claims_intake``).
MONGODB_BUCKET : str
    GridFS bucket name (default ``claim_files``).
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import gridfs
from gridfs.errors import NoFile
from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import MongoClient

from claims_backend.config import MONGODB_BUCKET_NAME, MONGODB_DB_NAME, MONGODB_URI

LOG = logging.getLogger(__name__)


@dataclass
class StoredBlob:
    artifact_id: str
    data: bytes
    mime_type: str
    filename: str = ""


class ObjectStorage(ABC):
    """Blob store contract used by the orchestrator.

    ``delete`` must be idempotent: deleting a missing artifact returns
    False instead of raising, so compensation can run more than once.
    """

    @abstractmethod
    async def put(self, data: bytes, mime_type: str, filename: str = "") -> str:
        """Store *data* and return its artifact id."""

    @abstractmethod
    async def get(self, artifact_id: str) -> StoredBlob:
        """Return the blob, raising ``KeyError`` when it does not exist."""

    @abstractmethod
    async def delete(self, artifact_id: str) -> bool:
        """Delete the blob. Returns False when it was already gone."""


def _object_id(artifact_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(artifact_id)
    except (InvalidId, TypeError):
        return None


class GridFSObjectStorage(ObjectStorage):
    """GridFS-backed object storage."""

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        bucket_name: Optional[str] = None,
        timeout_seconds: int = 30,
    ):
        self.uri = uri or MONGODB_URI
        if not self.uri:
            raise ValueError(
                "MongoDB URI must be provided or set in MONGODB_URI environment variable"
            )
        self._client = MongoClient(
            self.uri,
            serverSelectionTimeoutMS=timeout_seconds * 1000,
            connectTimeoutMS=timeout_seconds * 1000,
        )
        database = self._client[db_name or MONGODB_DB_NAME]
        self._bucket = gridfs.GridFSBucket(database, bucket_name=bucket_name or MONGODB_BUCKET_NAME)

    def _put_sync(self, data: bytes, mime_type: str, filename: str) -> str:
        file_id = self._bucket.upload_from_stream(
            filename or "upload",
            data,
            metadata={"mime_type": mime_type},
        )
        return str(file_id)

    def _get_sync(self, artifact_id: str) -> StoredBlob:
        oid = _object_id(artifact_id)
        if oid is None:
            raise KeyError(artifact_id)
        try:
            stream = self._bucket.open_download_stream(oid)
        except NoFile as e:
            raise KeyError(artifact_id) from e
        metadata = stream.metadata or {}
        return StoredBlob(
            artifact_id=artifact_id,
            data=stream.read(),
            mime_type=metadata.get("mime_type", "application/octet-stream"),
            filename=stream.filename or "",
        )

    def _delete_sync(self, artifact_id: str) -> bool:
        oid = _object_id(artifact_id)
        if oid is None:
            return False
        try:
            self._bucket.delete(oid)
        except NoFile:
            return False
        return True

    async def put(self, data: bytes, mime_type: str, filename: str = "") -> str:
        artifact_id = await asyncio.to_thread(self._put_sync, data, mime_type, filename)
        LOG.info("Stored %s (%d bytes) as %s", filename or mime_type, len(data), artifact_id)
        return artifact_id

    async def get(self, artifact_id: str) -> StoredBlob:
        return await asyncio.to_thread(self._get_sync, artifact_id)

    async def delete(self, artifact_id: str) -> bool:
        deleted = await asyncio.to_thread(self._delete_sync, artifact_id)
        if not deleted:
            LOG.debug("Artifact %s already absent", artifact_id)
        return deleted

    def close(self) -> None:
        self._client.close()


__all__ = ["GridFSObjectStorage", "ObjectStorage", "StoredBlob"]
