"""
Connection Transport Abstraction

Sessions talk to clients through anything shaped like `Connection`:
named events out (`emit`), named listeners in (`on`/`off`) and a forced
`disconnect`. A websocket adapter only has to provide these four calls.

`InMemoryConnection` is the in-process transport used by the local
walkthrough and the test-suite. It records everything emitted and lets
callers deliver inbound events as a client would.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from mentorsync.core import constants as C


logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


@runtime_checkable
class Connection(Protocol):
    """Minimal bidirectional event transport."""

    @property
    def id(self) -> str: ...

    def emit(self, event: str, *args: Any) -> None: ...

    def on(self, event: str, listener: Listener) -> None: ...

    def off(self, event: str, listener: Listener) -> None: ...

    def disconnect(self) -> None: ...


@dataclass(frozen=True, slots=True)
class EmittedEvent:
    event: str
    args: tuple[Any, ...]


class InMemoryConnection:
    """
    In-process connection.

    Listeners may be plain callables or coroutine functions. `deliver`
    awaits every coroutine a listener returns, so a test observes the
    full effect of an inbound event once `deliver` returns. Coroutines
    started by `disconnect()` run as tasks; `drain()` awaits them.
    """

    __slots__ = ("_id", "_listeners", "_emitted", "_connected", "_pending")

    def __init__(self, connection_id: str) -> None:
        self._id = connection_id
        self._listeners: dict[str, list[Listener]] = {}
        self._emitted: list[EmittedEvent] = []
        self._connected = True
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def id(self) -> str:
        return self._id

    @property
    def connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # Connection protocol
    # -------------------------------------------------------------------------

    def emit(self, event: str, *args: Any) -> None:
        if not self._connected:
            logger.debug("Dropping %s on closed connection %s", event, self._id)
            return
        self._emitted.append(EmittedEvent(event=event, args=args))

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event]

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        for listener in list(self._listeners.get(C.EVENT_DISCONNECT, ())):
            outcome = listener()
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    # -------------------------------------------------------------------------
    # Client side
    # -------------------------------------------------------------------------

    async def deliver(self, event: str, *args: Any) -> None:
        """Fire every listener for `event` as the transport would."""
        for listener in list(self._listeners.get(event, ())):
            outcome = listener(*args)
            if inspect.isawaitable(outcome):
                await outcome

    async def reconnect(self) -> None:
        """Reopen the connection and fire `connect`."""
        self._connected = True
        await self.deliver(C.EVENT_CONNECT)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def call(self, command: str, *args: Any) -> Optional[Any]:
        """
        Invoke a command with a recording callback and return what the
        callback received, or None when it was never called.
        """
        received: list[Any] = []
        await self.deliver(command, *args, received.append)
        return received[0] if received else None

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def emitted(self) -> list[EmittedEvent]:
        return list(self._emitted)

    def events(self, event: str) -> list[tuple[Any, ...]]:
        return [e.args for e in self._emitted if e.event == event]

    def states(self) -> list[str]:
        return [args[0] for args in self.events(C.EVENT_STATE)]

    def messages(self) -> list[dict[str, Any]]:
        return [args[0] for args in self.events(C.EVENT_MESSAGE)]

    def data(self, data_type: Optional[str] = None) -> list[dict[str, Any]]:
        payloads = [args[0] for args in self.events(C.EVENT_DATA)]
        if data_type is None:
            return payloads
        return [p for p in payloads if p.get("type") == data_type]

    def listening(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def clear(self) -> None:
        self._emitted.clear()
