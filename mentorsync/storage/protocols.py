"""
Persistence Gateway Protocol: Document Storage Abstraction Layer

Provides the structural subtyping protocol (PEP 544) every document store
backend implements, plus the predicate model used by filtered queries.

Design Principles:
    - Zero-exception control flow via Result[T, StorageError]
    - Async-first; every call is an await point where other sessions
      may interleave
    - Atomic per single document, never transactional across documents
    - Documents are plain dicts; the gateway owns the `id` field

License: MIT
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Iterable,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from mentorsync.core.errors import StorageError
from mentorsync.core.types import Document, DocumentId, Result


# =============================================================================
# QUERY MODEL
# =============================================================================
class QueryOp(Enum):
    """Comparison operators supported by `Predicate`."""
    EQ = "=="
    NE = "!="
    IN = "in"
    ARRAY_CONTAINS = "array-contains"


class Combinator(Enum):
    """How multiple predicates combine."""
    AND = "and"
    OR = "or"


@dataclass(frozen=True, slots=True)
class Predicate:
    """
    Single field condition: `field op value`.

    A missing field never matches, except under NE.
    """
    field: str
    op: QueryOp
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> Predicate:
        return cls(field=field, op=QueryOp.EQ, value=value)

    def matches(self, doc: Document) -> bool:
        present = self.field in doc
        actual = doc.get(self.field)
        if self.op is QueryOp.EQ:
            return present and actual == self.value
        if self.op is QueryOp.NE:
            return not present or actual != self.value
        if self.op is QueryOp.IN:
            return present and actual in self.value
        if self.op is QueryOp.ARRAY_CONTAINS:
            return present and isinstance(actual, list) and self.value in actual
        return False


def matches_all(
    doc: Document,
    predicates: Sequence[Predicate],
    combinator: Combinator = Combinator.AND,
) -> bool:
    """
    Evaluate predicates against a document.

    An empty predicate list matches every document.
    """
    if not predicates:
        return True
    if combinator is Combinator.OR:
        return any(p.matches(doc) for p in predicates)
    return all(p.matches(doc) for p in predicates)


# =============================================================================
# OPERATION TYPE
# =============================================================================
class OperationType(Enum):
    """Gateway operation types for logging and metrics."""
    CREATE = "create"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    QUERY = "query"


# =============================================================================
# DOCUMENT GATEWAY PROTOCOL
# =============================================================================
@runtime_checkable
class DocumentGateway(Protocol):
    """
    Async document store keyed by (collection, id).

    All methods return Result[T, StorageError]. Returned documents are
    copies: mutating them never affects stored state.

    Example:
        result = await gateway.get_with_id("user", user_id)
        if result.is_ok() and result.value is not None:
            user = result.value
    """

    @abstractmethod
    async def create(
        self,
        collection: str,
        doc: Document,
    ) -> Result[DocumentId, StorageError]:
        """
        Insert a new document under a freshly minted ID.

        Returns:
            Ok(id): The new document's ID (also stored as doc["id"])
        """
        ...

    @abstractmethod
    async def get_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[Optional[Document], StorageError]:
        """
        Fetch one document.

        Returns:
            Ok(doc): Found
            Ok(None): No such document
            Err(error): Backend failure
        """
        ...

    @abstractmethod
    async def set_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
        partial: Document,
        merge: bool = True,
    ) -> Result[None, StorageError]:
        """
        Write a document.

        With merge=True the given fields are merged into the existing
        document (created if absent); otherwise the document is replaced.
        """
        ...

    @abstractmethod
    async def delete_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[None, StorageError]:
        """Delete one document. Deleting a missing document succeeds."""
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[list[Document], StorageError]:
        """Return every document matching the predicates, in insertion order."""
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        combinator: Combinator = Combinator.AND,
    ) -> Result[int, StorageError]:
        """Delete every matching document; returns the count removed."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


def predicates_from_triples(triples: Iterable[tuple[str, str, Any]]) -> list[Predicate]:
    """
    Build predicates from `(field, op, value)` triples.

    Raises:
        ValueError: Unknown operator string.
    """
    return [Predicate(field=f, op=QueryOp(op), value=v) for f, op, v in triples]


__all__ = [
    "QueryOp",
    "Combinator",
    "Predicate",
    "matches_all",
    "predicates_from_triples",
    "OperationType",
    "DocumentGateway",
]
