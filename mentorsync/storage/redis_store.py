"""
Redis Document Store
====================

Redis implementation of the DocumentGateway protocol, for deployments
where several MentorSync processes share one store.

Design Principles:
------------------
1. **Per-document atomicity**: merges use WATCH/MULTI optimistic
   transactions on the single document key
2. **Pipeline Batching**: collection scans fetch documents in one
   round-trip
3. **Result Monad**: No exceptions for control flow

Memory Model:
-------------
Each document is stored as a Redis Hash at `{prefix}:{collection}:{id}`
with fields:
- 'd': document body (JSON)
- 'c': created_at (ISO timestamp)
- 'u': updated_at (ISO timestamp)

Each collection keeps a sorted set `{prefix}:{collection}:_index` of its
document IDs scored by creation time, so scans preserve insertion order.

Predicates are evaluated client-side after the scan.

License: MIT
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from mentorsync.core.errors import StorageError
from mentorsync.core.types import (
    Document,
    DocumentId,
    Err,
    Ok,
    Result,
    new_document_id,
)
from mentorsync.storage.config import RedisConfig
from mentorsync.storage.protocols import (
    Combinator,
    OperationType,
    Predicate,
    matches_all,
)


# =============================================================================
# CONSTANTS
# =============================================================================

# Optimistic merge retries before giving up on a contended key
MAX_MERGE_ATTEMPTS: int = 5

INDEX_SUFFIX: str = "_index"


# =============================================================================
# REDIS DOCUMENT STORE
# =============================================================================

class RedisDocumentStore:
    """
    Redis-backed persistence gateway.

    Example:
        >>> store = RedisDocumentStore(RedisConfig(host="redis.example.com"))
        >>> await store.connect()
        >>> user_id = (await store.create("user", {"username": "ada"})).unwrap()
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_client",
        "_connected",
    )

    def __init__(
        self,
        config: RedisConfig,
        client: Optional["aioredis.Redis"] = None,
    ) -> None:
        """
        Args:
            config: Redis connection configuration.
            client: Pre-built client (tests pass a fake-compatible one).

        Note:
            Call `connect()` before performing operations.
        """
        self._config = config
        self._client = client
        self._connected = client is not None

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """Create the client and verify it with PING."""
        try:
            if self._client is None:
                self._client = aioredis.Redis(**self._config.get_connection_kwargs())
            await self._client.ping()
            self._connected = True
            return Ok(None)
        except RedisError as e:
            return Err(StorageError.connection_failed(self._config.target, cause=e))

    async def close(self) -> None:
        """Close the client. Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False

    # -------------------------------------------------------------------------
    # KEY LAYOUT
    # -------------------------------------------------------------------------

    def _doc_key(self, collection: str, doc_id: DocumentId) -> str:
        return f"{self._config.key_prefix}:{collection}:{doc_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self._config.key_prefix}:{collection}:{INDEX_SUFFIX}"

    def _not_connected(self, operation: OperationType, collection: str) -> Err[StorageError]:
        return Err(StorageError.operation_failed(
            operation.value,
            collection,
            cause=ConnectionError("Not connected"),
        ))

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[Document]:
        if raw is None:
            return None
        return json.loads(raw)

    # -------------------------------------------------------------------------
    # DocumentGateway Implementation
    # -------------------------------------------------------------------------

    async def create(
        self,
        collection: str,
        doc: Document,
    ) -> Result[DocumentId, StorageError]:
        """
        Insert a new document and index it.

        Complexity: O(log N) for the index insert.
        """
        if not self._connected or self._client is None:
            return self._not_connected(OperationType.CREATE, collection)

        doc_id = new_document_id()
        stored = dict(doc)
        stored["id"] = doc_id
        try:
            body = json.dumps(stored)
        except (TypeError, ValueError) as e:
            return Err(StorageError.serialization_failed(collection, doc_id, cause=e))

        now = self._now()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self._doc_key(collection, doc_id), mapping={
                    "d": body,
                    "c": now,
                    "u": now,
                })
                pipe.zadd(self._index_key(collection), {doc_id: time.time_ns()})
                await pipe.execute()
            return Ok(doc_id)
        except RedisError as e:
            return Err(StorageError.operation_failed("create", collection, cause=e))

    async def get_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[Optional[Document], StorageError]:
        if not self._connected or self._client is None:
            return self._not_connected(OperationType.READ, collection)

        try:
            raw = await self._client.hget(self._doc_key(collection, doc_id), "d")
        except RedisError as e:
            return Err(StorageError.operation_failed("read", collection, cause=e))
        try:
            return Ok(self._decode(raw))
        except json.JSONDecodeError as e:
            return Err(StorageError.serialization_failed(collection, doc_id, cause=e))

    async def set_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
        partial: Document,
        merge: bool = True,
    ) -> Result[None, StorageError]:
        """
        Merge (WATCH/MULTI) or replace a document.

        A merge retries when another client touches the key between the
        read and the write.
        """
        if not self._connected or self._client is None:
            return self._not_connected(OperationType.WRITE, collection)

        key = self._doc_key(collection, doc_id)
        index_key = self._index_key(collection)

        try:
            for _ in range(MAX_MERGE_ATTEMPTS):
                async with self._client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.hget(key, "d")
                        existing = self._decode(raw) if raw is not None else None
                        if merge and existing is not None:
                            existing.update(partial)
                            updated = existing
                        else:
                            updated = dict(partial)
                        updated["id"] = doc_id
                        now = self._now()

                        pipe.multi()
                        fields: Dict[str, Any] = {"d": json.dumps(updated), "u": now}
                        if existing is None:
                            fields["c"] = now
                            pipe.zadd(index_key, {doc_id: time.time_ns()}, nx=True)
                        pipe.hset(key, mapping=fields)
                        await pipe.execute()
                        return Ok(None)
                    except WatchError:
                        continue
            return Err(StorageError.operation_failed(
                "write",
                collection,
                cause=RuntimeError(f"contention on {doc_id} after {MAX_MERGE_ATTEMPTS} attempts"),
            ))
        except (TypeError, ValueError) as e:
            return Err(StorageError.serialization_failed(collection, doc_id, cause=e))
        except RedisError as e:
            return Err(StorageError.operation_failed("write", collection, cause=e))

    async def delete_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[None, StorageError]:
        if not self._connected or self._client is None:
            return self._not_connected(OperationType.DELETE, collection)

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(self._doc_key(collection, doc_id))
                pipe.zrem(self._index_key(collection), doc_id)
                await pipe.execute()
            return Ok(None)
        except RedisError as e:
            return Err(StorageError.operation_failed("delete", collection, cause=e))

    async def _scan(self, collection: str) -> List[Document]:
        """All documents of a collection in creation order."""
        assert self._client is not None
        ids: List[str] = await self._client.zrange(self._index_key(collection), 0, -1)
        if not ids:
            return []
        async with self._client.pipeline(transaction=False) as pipe:
            for doc_id in ids:
                pipe.hget(self._doc_key(collection, doc_id), "d")
            bodies = await pipe.execute()
        return [json.loads(body) for body in bodies if body is not None]

    async def get(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[List[Document], StorageError]:
        """
        Filtered scan.

        Complexity: O(N) over the collection, single pipelined round-trip.
        """
        if not self._connected or self._client is None:
            return self._not_connected(OperationType.QUERY, collection)

        try:
            docs = await self._scan(collection)
        except RedisError as e:
            return Err(StorageError.operation_failed("query", collection, cause=e))
        except json.JSONDecodeError as e:
            return Err(StorageError.serialization_failed(collection, "*", cause=e))
        return Ok([doc for doc in docs if matches_all(doc, predicates, combinator)])

    async def delete(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[int, StorageError]:
        found = await self.get(collection, predicates, combinator)
        if found.is_err():
            return found
        doomed = [doc["id"] for doc in found.value]
        if not doomed:
            return Ok(0)

        assert self._client is not None
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for doc_id in doomed:
                    pipe.delete(self._doc_key(collection, doc_id))
                pipe.zrem(self._index_key(collection), *doomed)
                await pipe.execute()
            return Ok(len(doomed))
        except RedisError as e:
            return Err(StorageError.operation_failed("delete", collection, cause=e))


__all__ = [
    "RedisDocumentStore",
]
