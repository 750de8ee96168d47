"""
Document Store Backend Configuration
====================================

Type-safe, immutable configuration dataclasses for the persistence gateway
backends. All configurations use frozen dataclasses so one instance can be
shared by every session of the process.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: In-memory for development; Redis explicit for deployment
4. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BackendType(Enum):
    """
    Document store backend type.

    Used for factory dispatch in `create_gateway`.
    """
    IN_MEMORY = auto()  # Development/testing only
    REDIS = auto()      # Shared store for multi-process deployments

    @classmethod
    def parse(cls, value: str) -> "BackendType":
        """Parse a case-insensitive backend name ("memory", "in_memory", "redis")."""
        normalized = value.strip().lower()
        if normalized in ("memory", "in_memory", "inmemory"):
            return cls.IN_MEMORY
        if normalized == "redis":
            return cls.REDIS
        raise ValueError(f"Unknown storage backend: {value!r}")


# =============================================================================
# REDIS CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Redis connection configuration for `RedisDocumentStore`.

    Attributes:
        host: Redis server hostname or IP address.
        port: Redis server port (1-65535).
        password: Optional authentication password.
        db: Logical database index (0-15).
        key_prefix: Namespace prepended to every document key.
        max_connections: Connection pool size. Must be > 0.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        socket_timeout_ms: Socket read/write timeout in milliseconds.
        ssl: Enable TLS encryption for connections.

    Example:
        >>> config = RedisConfig.from_env()
        >>> config = RedisConfig(host="redis.example.com", password="secret")
    """
    password: Optional[str] = None
    host: str = "localhost"
    key_prefix: str = "mentorsync"

    socket_timeout_ms: int = 5000
    connect_timeout_ms: int = 2000
    max_connections: int = 50
    port: int = 6379
    db: int = 0

    ssl: bool = False

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")
        if not (0 <= self.db <= 15):
            raise ValueError(f"db must be in [0, 15], got {self.db}")
        if self.max_connections <= 0:
            raise ValueError(f"max_connections must be > 0, got {self.max_connections}")
        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be > 0, got {self.connect_timeout_ms}")
        if self.socket_timeout_ms <= 0:
            raise ValueError(f"socket_timeout_ms must be > 0, got {self.socket_timeout_ms}")
        if not self.key_prefix or ":" in self.key_prefix:
            raise ValueError(f"key_prefix must be non-empty without ':', got {self.key_prefix!r}")

    @classmethod
    def from_env(cls, prefix: str = "MENTORSYNC_REDIS") -> "RedisConfig":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_HOST: Server hostname (default: localhost)
        - {prefix}_PORT: Server port (default: 6379)
        - {prefix}_PASSWORD: Authentication password
        - {prefix}_DB: Database index (default: 0)
        - {prefix}_KEY_PREFIX: Key namespace (default: mentorsync)
        - {prefix}_SSL: Enable TLS (default: false)
        - {prefix}_MAX_CONNECTIONS: Pool size (default: 50)
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        def _get_bool(key: str, default: bool) -> bool:
            val = _get(key).lower()
            if val in ("true", "1", "yes"):
                return True
            if val in ("false", "0", "no"):
                return False
            return default

        return cls(
            host=_get("HOST", "localhost"),
            port=_get_int("PORT", 6379),
            password=_get("PASSWORD") or None,
            db=_get_int("DB", 0),
            key_prefix=_get("KEY_PREFIX", "mentorsync"),
            max_connections=_get_int("MAX_CONNECTIONS", 50),
            connect_timeout_ms=_get_int("CONNECT_TIMEOUT_MS", 2000),
            socket_timeout_ms=_get_int("SOCKET_TIMEOUT_MS", 5000),
            ssl=_get_bool("SSL", False),
        )

    @property
    def target(self) -> str:
        """host:port/db, for log lines and error messages."""
        return f"{self.host}:{self.port}/{self.db}"

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """
        Generate kwargs for redis.asyncio.Redis().

        Responses are always decoded: documents are stored as JSON text.
        """
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "max_connections": self.max_connections,
            "socket_connect_timeout": self.connect_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": True,
            "ssl": self.ssl,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


# =============================================================================
# UNIFIED STORAGE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Persistence gateway configuration.

    Attributes:
        backend: Which document store implementation to build.
        redis_config: Required when backend is REDIS.
        simulate_latency_ms: Artificial per-call delay for the in-memory
            backend, used to widen interleavings in local experiments.
    """
    backend: BackendType = BackendType.IN_MEMORY
    redis_config: Optional[RedisConfig] = None
    simulate_latency_ms: float = 0.0

    def __post_init__(self) -> None:
        if self.backend == BackendType.REDIS and self.redis_config is None:
            raise ValueError("redis_config required when backend=REDIS")
        if self.simulate_latency_ms < 0:
            raise ValueError("simulate_latency_ms must be >= 0")

    @classmethod
    def for_development(cls) -> "StorageConfig":
        """In-memory store, no external dependencies."""
        return cls(backend=BackendType.IN_MEMORY)

    @classmethod
    def from_env(cls, prefix: str = "MENTORSYNC_STORAGE") -> "StorageConfig":
        """
        Environment Variables:
        - {prefix}_BACKEND: memory|redis (default: memory)
        - {prefix}_SIMULATE_LATENCY_MS: float (default: 0)

        Plus MENTORSYNC_REDIS_* when the backend is redis.
        """
        backend = BackendType.parse(os.environ.get(f"{prefix}_BACKEND", "memory"))
        latency = float(os.environ.get(f"{prefix}_SIMULATE_LATENCY_MS", "0") or 0)
        redis_config = RedisConfig.from_env() if backend == BackendType.REDIS else None
        return cls(
            backend=backend,
            redis_config=redis_config,
            simulate_latency_ms=latency,
        )


__all__ = [
    "BackendType",
    "RedisConfig",
    "StorageConfig",
]
