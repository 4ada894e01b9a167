"""Vector index — one namespace per course.

ChromaVectorIndex maps each namespace to a ChromaDB collection.
MemoryVectorIndex keeps everything in process and backs tests and local runs.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import chromadb

from app.errors import ConfigurationError, VectorStoreError


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    document: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    document: str
    metadata: dict[str, Any] = field(default_factory=dict)


def namespace_for_course(course_id: str) -> str:
    """Collection name for a course.

    Collection names must be 3-63 chars and start/end with an alphanumeric.
    The readable prefix is sanitized and clamped, so a hash of the raw id
    keeps ids like "cs.101" and "cs_101" apart.
    """
    course_id = str(course_id)
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", course_id)[:40]
    digest = hashlib.sha1(course_id.encode("utf-8")).hexdigest()[:10]
    return f"course_{sanitized}_{digest}"


def to_vector_metadata(metadata: dict) -> dict:
    """Flatten chunk metadata into the scalar-only form vector stores accept.

    None values are dropped, string lists are comma-joined and any other
    list or dict is stored as a JSON string.
    """
    flat = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (bool, int, float, str)):
            flat[key] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            if value:
                flat[key] = ",".join(value)
        else:
            flat[key] = json.dumps(value)
    return flat


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorIndex(ABC):
    """Namespace-scoped upsert, similarity query and delete."""

    def is_configured(self) -> bool:
        return True

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("Vector index is not configured")

    @abstractmethod
    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        ...

    @abstractmethod
    def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Top-k matches whose metadata equals every key/value in where."""

    @abstractmethod
    def delete(self, namespace: str, where: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def count(self, namespace: str, where: dict[str, Any] | None = None) -> int:
        ...


class MemoryVectorIndex(VectorIndex):
    """In-memory vector index for testing and small deployments."""

    def __init__(self):
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _matches(metadata: dict, where: dict | None) -> bool:
        if not where:
            return True
        return all(key in metadata and metadata[key] == value for key, value in where.items())

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        with self._lock:
            space = self._namespaces.setdefault(namespace, {})
            for record in records:
                space[record.id] = VectorRecord(
                    id=record.id,
                    vector=list(record.vector),
                    document=record.document,
                    metadata=to_vector_metadata(record.metadata),
                )
        return len(records)

    def query(self, namespace, vector, top_k, where=None):
        with self._lock:
            candidates = list(self._namespaces.get(namespace, {}).values())
        scored = [
            VectorMatch(id=r.id, score=_cosine_similarity(vector, r.vector), document=r.document, metadata=dict(r.metadata))
            for r in candidates
            if self._matches(r.metadata, where)
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]

    def delete(self, namespace, where):
        with self._lock:
            space = self._namespaces.get(namespace, {})
            for record_id in [rid for rid, r in space.items() if self._matches(r.metadata, where)]:
                del space[record_id]

    def count(self, namespace, where=None):
        with self._lock:
            return sum(1 for r in self._namespaces.get(namespace, {}).values() if self._matches(r.metadata, where))


class ChromaVectorIndex(VectorIndex):
    """ChromaDB persistent store, one cosine-space collection per namespace."""

    def __init__(self, persist_directory: str):
        self.persist_directory = persist_directory
        self._client = None

    def is_configured(self) -> bool:
        return bool(self.persist_directory)

    def _collection(self, namespace: str):
        self.ensure_configured()
        if self._client is None:
            self._client = chromadb.PersistentClient(path=self.persist_directory)
        return self._client.get_or_create_collection(
            name=namespace,
            metadata={"hnsw:space": "cosine"},
        )

    @staticmethod
    def _where(where: dict | None) -> dict | None:
        if not where:
            return None
        clauses = [{key: {"$eq": value}} for key, value in where.items()]
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def upsert(self, namespace, records):
        if not records:
            return 0
        try:
            self._collection(namespace).upsert(
                ids=[r.id for r in records],
                embeddings=[r.vector for r in records],
                documents=[r.document for r in records],
                metadatas=[to_vector_metadata(r.metadata) for r in records],
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Vector upsert into {namespace} failed", detail=str(e)) from e
        return len(records)

    def query(self, namespace, vector, top_k, where=None):
        try:
            collection = self._collection(namespace)
            available = collection.count()
            if available == 0:
                return []
            result = collection.query(
                query_embeddings=[vector],
                n_results=min(top_k, available),
                where=self._where(where),
                include=["documents", "metadatas", "distances"],
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Vector query on {namespace} failed", detail=str(e)) from e

        ids = result.get("ids", [[]])[0]
        documents = result.get("documents", [[]])[0]
        metadatas = result.get("metadatas", [[]])[0]
        distances = result.get("distances", [[]])[0]
        return [
            VectorMatch(id=i, score=1.0 - float(d), document=doc or "", metadata=dict(meta or {}))
            for i, doc, meta, d in zip(ids, documents, metadatas, distances)
        ]

    def delete(self, namespace, where):
        try:
            self._collection(namespace).delete(where=self._where(where))
        except ConfigurationError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Vector delete in {namespace} failed", detail=str(e)) from e

    def count(self, namespace, where=None):
        try:
            collection = self._collection(namespace)
            if not where:
                return collection.count()
            return len(collection.get(where=self._where(where), include=[])["ids"])
        except ConfigurationError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Vector count in {namespace} failed", detail=str(e)) from e


def build_vector_index(settings) -> VectorIndex:
    store = settings.VECTOR_STORE.strip().lower()
    if store == "chroma":
        return ChromaVectorIndex(settings.CHROMA_DB_PATH)
    if store == "memory":
        return MemoryVectorIndex()
    raise ConfigurationError(f"Unknown VECTOR_STORE: {settings.VECTOR_STORE}")
