"""
Shared fixtures: an in-memory store, fresh metrics and a wired server.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from mentorsync.core.config import MentorSyncConfig, SessionConfig
from mentorsync.mentorship.engine import MentorshipEngine
from mentorsync.observability.metrics import MetricsCollector, SessionMetrics
from mentorsync.server import MentorSyncServer
from mentorsync.session.mentor_index import MentorAvailabilityIndex
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.storage.backends import InMemoryDocumentStore


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def collector() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def metrics(collector: MetricsCollector) -> SessionMetrics:
    return SessionMetrics.from_collector(collector)


@pytest.fixture
def registry(metrics: SessionMetrics) -> ConnectionRegistry:
    return ConnectionRegistry(metrics)


@pytest.fixture
def index(metrics: SessionMetrics) -> MentorAvailabilityIndex:
    return MentorAvailabilityIndex(metrics)


@pytest.fixture
def engine(
    store: InMemoryDocumentStore,
    registry: ConnectionRegistry,
    metrics: SessionMetrics,
) -> MentorshipEngine:
    return MentorshipEngine(store, registry, metrics)


@pytest.fixture
def config() -> MentorSyncConfig:
    return MentorSyncConfig(
        session=SessionConfig(allow_testing_mode=True, reconcile_on_startup=False),
    )


@pytest_asyncio.fixture
async def server(
    store: InMemoryDocumentStore,
    collector: MetricsCollector,
    config: MentorSyncConfig,
) -> MentorSyncServer:
    srv = MentorSyncServer(config, gateway=store, collector=collector)
    (await srv.startup()).unwrap()
    return srv
