from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from voicementor.config import StorageConfig
from voicementor.services.firebase import get_firebase_app

logger = structlog.get_logger(__name__)

Document = dict[str, Any]


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Replace the whole document (last write wins)."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def list_ids(self, collection: str) -> list[str]:
        pass

    @abstractmethod
    async def where_equals(self, collection: str, field: str, value: Any) -> list[tuple[str, Document]]:
        pass


class MemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(data))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collections.get(collection, {}).pop(doc_id, None)

    async def list_ids(self, collection: str) -> list[str]:
        return list(self._collections.get(collection, {}).keys())

    async def where_equals(self, collection: str, field: str, value: Any) -> list[tuple[str, Document]]:
        return [
            (doc_id, copy.deepcopy(doc))
            for doc_id, doc in self._collections.get(collection, {}).items()
            if doc.get(field) == value
        ]


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> "FirestoreDocumentStore":
        from firebase_admin import firestore_async  # type: ignore

        app = get_firebase_app(config.credentials_path, config.project_id)
        return cls(firestore_async.client(app))

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        snapshot = await self._client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        await self._client.collection(collection).document(doc_id).set(dict(data))

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._client.collection(collection).document(doc_id).delete()

    async def list_ids(self, collection: str) -> list[str]:
        return [snapshot.id async for snapshot in self._client.collection(collection).stream()]

    async def where_equals(self, collection: str, field: str, value: Any) -> list[tuple[str, Document]]:
        from google.cloud.firestore_v1.base_query import FieldFilter  # type: ignore

        query = self._client.collection(collection).where(filter=FieldFilter(field, "==", value))
        return [(snapshot.id, snapshot.to_dict() or {}) async for snapshot in query.stream()]


def build_document_store(config: StorageConfig) -> DocumentStore:
    backend = str(config.backend).lower()
    if backend == "firestore":
        return FirestoreDocumentStore.from_config(config)
    if backend != "memory":
        logger.warning("Unknown storage backend, using in-memory store", backend=backend)
    return MemoryDocumentStore()
