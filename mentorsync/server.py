"""
MentorSync Server: process-wide wiring.

One gateway, one connection registry, one mentor availability index and
one mentorship engine are shared by every session the process accepts.

Usage:
    server = MentorSyncServer(config)
    (await server.startup()).unwrap()
    session = await server.accept(connection, Identity(subject="oauth|123"))
    ...
    await server.shutdown()
"""

from __future__ import annotations

import weakref
from typing import Optional

from mentorsync.core.config import MentorSyncConfig
from mentorsync.core.errors import MentorSyncError
from mentorsync.core.types import Err, Ok, Result
from mentorsync.mentorship.engine import MentorshipEngine
from mentorsync.models.user import Identity
from mentorsync.observability.logging import StructuredLogger
from mentorsync.observability.metrics import MetricsCollector, SessionMetrics
from mentorsync.services.assessments import AssessmentService
from mentorsync.services.profile import ProfileService
from mentorsync.session.authenticated import AuthenticatedSession, SessionDeps, SessionOptions
from mentorsync.session.connection import Connection
from mentorsync.session.mentor_index import MentorAvailabilityIndex
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.storage import create_gateway
from mentorsync.storage.protocols import DocumentGateway
from mentorsync.validation import BasicProfileValidator, ProfileValidator


class MentorSyncServer:
    """
    Hub owning the shared collaborators and the live sessions.

    Attributes:
        registry: User ID to live sessions
        index: Accepting mentors
        engine: Mentorship lifecycle and repair
    """

    def __init__(
        self,
        config: Optional[MentorSyncConfig] = None,
        gateway: Optional[DocumentGateway] = None,
        validator: Optional[ProfileValidator] = None,
        collector: Optional[MetricsCollector] = None,
    ) -> None:
        self._config = config or MentorSyncConfig()
        self._gateway = gateway or create_gateway(self._config.storage)
        self._logger = StructuredLogger(__name__)

        if collector is None:
            collector = (
                MetricsCollector.get_instance()
                if self._config.observability.metrics_enabled
                else MetricsCollector()
            )
        self._collector = collector
        self._metrics = SessionMetrics.from_collector(collector)

        self._registry = ConnectionRegistry(self._metrics)
        self._index = MentorAvailabilityIndex(self._metrics)
        self._engine = MentorshipEngine(self._gateway, self._registry, self._metrics)
        self._deps = SessionDeps(
            gateway=self._gateway,
            registry=self._registry,
            index=self._index,
            engine=self._engine,
            profiles=ProfileService(
                self._gateway,
                validator or BasicProfileValidator(
                    self._gateway, self._config.session.min_profile_item_length,
                ),
                self._index,
                self._config.session,
            ),
            assessments=AssessmentService(self._gateway),
            metrics=self._metrics,
        )
        # Sessions live as long as their connection holds their listeners.
        self._sessions: weakref.WeakValueDictionary[str, AuthenticatedSession] = (
            weakref.WeakValueDictionary()
        )
        self._started = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def startup(self) -> Result[None, MentorSyncError]:
        """
        Connect the gateway, rebuild the mentor index and, when configured,
        run a reconciliation sweep.
        """
        connect = getattr(self._gateway, "connect", None)
        if connect is not None:
            connected = await connect()
            if connected.is_err():
                self._logger.error("Gateway connection failed", error=connected.error.to_dict())
                return Err(connected.error)

        rebuilt = await self._index.rebuild(self._gateway)
        if rebuilt.is_err():
            return Err(rebuilt.error)

        if self._config.session.reconcile_on_startup:
            swept = await self._engine.sweep()
            if swept.is_err():
                self._logger.error("Startup sweep failed", error=swept.error.to_dict())
                return Err(swept.error)

        self._started = True
        self._logger.info("Server started", mentors=rebuilt.value)
        return Ok(None)

    async def accept(
        self,
        connection: Connection,
        identity: Identity,
        options: Optional[SessionOptions] = None,
    ) -> AuthenticatedSession:
        """Bind a newly opened, identity-verified connection to a session."""
        options = options or SessionOptions()
        if options.testing and not self._config.session.allow_testing_mode:
            self._logger.warning("Testing mode requested but disabled", subject=identity.subject)
            options = SessionOptions()

        session = AuthenticatedSession(connection, identity, self._deps, options)
        self._sessions[session.session_id] = session
        await session.start()
        return session

    async def shutdown(self) -> None:
        """Disconnect every session and release the gateway."""
        for session in list(self._sessions.values()):
            session.close()
        for session in list(self._sessions.values()):
            await session.wait_closed()
        self._sessions.clear()
        await self._gateway.close()
        self._started = False
        self._logger.info("Server stopped")

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def config(self) -> MentorSyncConfig:
        return self._config

    @property
    def gateway(self) -> DocumentGateway:
        return self._gateway

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def index(self) -> MentorAvailabilityIndex:
        return self._index

    @property
    def engine(self) -> MentorshipEngine:
        return self._engine

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    @property
    def sessions(self) -> list[AuthenticatedSession]:
        return list(self._sessions.values())

    @property
    def started(self) -> bool:
        return self._started
