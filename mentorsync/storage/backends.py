"""
In-Memory Document Store: Development and Testing Implementation

Provides an in-memory implementation of the DocumentGateway protocol.

Design Principles:
    - Full protocol compliance for seamless swap with the Redis backend
    - Per-document atomicity via an asyncio lock; no multi-document
      transactions, matching every production backend
    - Optional latency simulation so concurrent sessions interleave
    - Fault injection hooks for exercising storage-failure paths in tests

Performance Characteristics:
    - create/get_with_id/set_with_id/delete_with_id: O(1) average case
    - get/delete with predicates: O(n) over the collection

License: MIT
"""

from __future__ import annotations

import asyncio
import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from mentorsync.core.errors import StorageError
from mentorsync.core.types import (
    Document,
    DocumentId,
    Err,
    Ok,
    Result,
    new_document_id,
)
from mentorsync.storage.protocols import (
    Combinator,
    OperationType,
    Predicate,
    matches_all,
)


# =============================================================================
# FAULT INJECTION
# =============================================================================
@dataclass
class InjectedFault:
    """
    Pending failure for a gateway operation.

    `collection=None` matches every collection; `doc_id=None` matches every
    document. Each match consumes one of `remaining`.
    """
    operation: OperationType
    collection: Optional[str] = None
    doc_id: Optional[DocumentId] = None
    remaining: int = 1
    message: str = "injected fault"

    def matches(
        self,
        operation: OperationType,
        collection: str,
        doc_id: Optional[DocumentId],
    ) -> bool:
        if self.remaining <= 0 or operation is not self.operation:
            return False
        if self.collection is not None and self.collection != collection:
            return False
        if self.doc_id is not None and self.doc_id != doc_id:
            return False
        return True


# =============================================================================
# IN-MEMORY DOCUMENT STORE
# =============================================================================
class InMemoryDocumentStore:
    """
    In-memory persistence gateway.

    Collections are insertion-ordered dicts of deep-copied documents.

    Thread Safety:
        All operations are protected by asyncio.Lock for
        concurrent access safety within async context.

    Example:
        store = InMemoryDocumentStore()
        user_id = (await store.create("user", {"username": "ada"})).unwrap()
        user = (await store.get_with_id("user", user_id)).unwrap()
    """

    __slots__ = (
        "_collections",
        "_lock",
        "_latency_s",
        "_faults",
        "_op_log",
    )

    def __init__(self, simulate_latency_ms: float = 0.0) -> None:
        """
        Initialize the store.

        Args:
            simulate_latency_ms: Artificial delay before every call.
        """
        self._collections: Dict[str, "OrderedDict[DocumentId, Document]"] = {}
        self._lock = asyncio.Lock()
        self._latency_s = simulate_latency_ms / 1000.0
        self._faults: List[InjectedFault] = []
        self._op_log: List[Tuple[OperationType, str, Optional[DocumentId]]] = []

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    def inject_fault(
        self,
        operation: OperationType,
        collection: Optional[str] = None,
        doc_id: Optional[DocumentId] = None,
        times: int = 1,
    ) -> InjectedFault:
        """Make the next `times` matching calls fail with a StorageError."""
        fault = InjectedFault(
            operation=operation,
            collection=collection,
            doc_id=doc_id,
            remaining=times,
        )
        self._faults.append(fault)
        return fault

    def clear_faults(self) -> None:
        self._faults.clear()

    @property
    def operation_log(self) -> List[Tuple[OperationType, str, Optional[DocumentId]]]:
        """Every call made so far as (operation, collection, doc_id)."""
        return list(self._op_log)

    def write_count(self) -> int:
        """Number of mutating calls (create/write/delete) so far."""
        mutating = (OperationType.CREATE, OperationType.WRITE, OperationType.DELETE)
        return sum(1 for op, _, _ in self._op_log if op in mutating)

    def peek(self, collection: str, doc_id: DocumentId) -> Optional[Document]:
        """Synchronous copy of a stored document, for assertions."""
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def seed(self, collection: str, doc: Document) -> DocumentId:
        """Synchronously insert a document (keeps a provided `id`)."""
        doc_id = doc.get("id") or new_document_id()
        stored = copy.deepcopy(doc)
        stored["id"] = doc_id
        self._collections.setdefault(collection, OrderedDict())[doc_id] = stored
        return doc_id

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _enter(
        self,
        operation: OperationType,
        collection: str,
        doc_id: Optional[DocumentId] = None,
    ) -> Optional[StorageError]:
        """Record the call, apply latency and consume a matching fault."""
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)
        self._op_log.append((operation, collection, doc_id))
        for fault in self._faults:
            if fault.matches(operation, collection, doc_id):
                fault.remaining -= 1
                return StorageError.operation_failed(
                    operation.value,
                    collection,
                    cause=RuntimeError(fault.message),
                )
        return None

    def _bucket(self, collection: str) -> "OrderedDict[DocumentId, Document]":
        return self._collections.setdefault(collection, OrderedDict())

    # -------------------------------------------------------------------------
    # DocumentGateway Implementation
    # -------------------------------------------------------------------------

    async def create(
        self,
        collection: str,
        doc: Document,
    ) -> Result[DocumentId, StorageError]:
        fault = await self._enter(OperationType.CREATE, collection)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            doc_id = new_document_id()
            stored = copy.deepcopy(doc)
            stored["id"] = doc_id
            self._bucket(collection)[doc_id] = stored
            return Ok(doc_id)

    async def get_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[Optional[Document], StorageError]:
        fault = await self._enter(OperationType.READ, collection, doc_id)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            doc = self._bucket(collection).get(doc_id)
            return Ok(copy.deepcopy(doc) if doc is not None else None)

    async def set_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
        partial: Document,
        merge: bool = True,
    ) -> Result[None, StorageError]:
        """
        Merge or replace a document.

        Complexity: O(f) where f is the number of written fields
        """
        fault = await self._enter(OperationType.WRITE, collection, doc_id)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            bucket = self._bucket(collection)
            incoming = copy.deepcopy(partial)
            if merge and doc_id in bucket:
                bucket[doc_id].update(incoming)
            else:
                bucket[doc_id] = incoming
            bucket[doc_id]["id"] = doc_id
            return Ok(None)

    async def delete_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[None, StorageError]:
        fault = await self._enter(OperationType.DELETE, collection, doc_id)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            self._bucket(collection).pop(doc_id, None)
            return Ok(None)

    async def get(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[List[Document], StorageError]:
        """
        Filtered scan.

        Complexity: O(n) where n is the collection size
        """
        fault = await self._enter(OperationType.QUERY, collection)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            return Ok([
                copy.deepcopy(doc)
                for doc in self._bucket(collection).values()
                if matches_all(doc, predicates, combinator)
            ])

    async def delete(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[int, StorageError]:
        fault = await self._enter(OperationType.DELETE, collection)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            bucket = self._bucket(collection)
            doomed = [
                doc_id for doc_id, doc in bucket.items()
                if matches_all(doc, predicates, combinator)
            ]
            for doc_id in doomed:
                del bucket[doc_id]
            return Ok(len(doomed))

    async def close(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # Utility Methods
    # -------------------------------------------------------------------------

    async def clear(self) -> None:
        """Remove every document from every collection."""
        async with self._lock:
            self._collections.clear()

    async def count(self, collection: str) -> int:
        async with self._lock:
            return len(self._bucket(collection))


__all__ = [
    "InjectedFault",
    "InMemoryDocumentStore",
]
