"""
Storage Module: Persistence Gateway
===================================

Provides:
- The DocumentGateway protocol and its predicate query model
- In-memory implementation for development/testing
- Redis implementation for shared deployments
- Factory function for backend selection
- Maintenance helpers (testing-document purge)

Design Principles:
-----------------
1. **Backend Agnostic**: Same interface for in-memory and Redis
2. **Factory Pattern**: Runtime backend selection via configuration
3. **Lazy Loading**: The Redis backend is imported only when selected
4. **Result Monad**: No exceptions for control flow

Example:
    >>> gateway = create_gateway(StorageConfig.for_development())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mentorsync.storage.protocols import (
    QueryOp,
    Combinator,
    Predicate,
    OperationType,
    DocumentGateway,
    matches_all,
    predicates_from_triples,
)
from mentorsync.storage.backends import (
    InjectedFault,
    InMemoryDocumentStore,
)
from mentorsync.storage.config import (
    BackendType,
    RedisConfig,
    StorageConfig,
)
from mentorsync.storage.maintenance import purge_testing_documents

if TYPE_CHECKING:
    from mentorsync.storage.redis_store import RedisDocumentStore


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_gateway(config: StorageConfig) -> DocumentGateway:
    """
    Create the persistence gateway selected by configuration.

    Returns:
        InMemoryDocumentStore: backend IN_MEMORY.
        RedisDocumentStore: backend REDIS (call `connect()` before use).
    """
    if config.backend == BackendType.REDIS:
        from mentorsync.storage.redis_store import RedisDocumentStore
        assert config.redis_config is not None
        return RedisDocumentStore(config.redis_config)

    return InMemoryDocumentStore(simulate_latency_ms=config.simulate_latency_ms)


__all__ = [
    # Protocols
    "QueryOp",
    "Combinator",
    "Predicate",
    "OperationType",
    "DocumentGateway",
    "matches_all",
    "predicates_from_triples",
    # Configuration
    "BackendType",
    "RedisConfig",
    "StorageConfig",
    # Backends
    "InjectedFault",
    "InMemoryDocumentStore",
    # Factory / maintenance
    "create_gateway",
    "purge_testing_documents",
]
