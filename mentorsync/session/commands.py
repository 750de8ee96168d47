"""
Command Contract and Per-State Command Tables

Every inbound command follows the same contract:

    command(*payload, callback)

1. `callback` (the last positional argument) must be callable. If not,
   the command is refused: an error goes out on `message` and nothing
   else happens.
2. Authenticated commands refresh the session's user snapshot first. A
   failed refresh is fatal: the session reports it, disconnects, and the
   command never runs.
3. The handler settles the command through a `Reply`: `ok(value)` calls
   back with a result, `fail(body)` sends `message{title, subject + body}`
   and calls back with False.
4. Anything the handler raises is logged and degrades to a generic
   message. Nothing propagates to the transport.

`CommandRouter` owns the listeners on the connection. Installing a table
removes every listener of the previous table before adding the new ones,
and each listener re-checks that its table is still the active one before
dispatching, so a late-firing listener from a former state is inert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from mentorsync.core import constants as C
from mentorsync.core.errors import MentorSyncError, SessionError, StorageError
from mentorsync.core.types import Document, Result
from mentorsync.observability.logging import StructuredLogger
from mentorsync.observability.metrics import SessionMetrics
from mentorsync.session.connection import Connection


logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[None]]


# =============================================================================
# COMMAND DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class CommandSpec:
    """
    Wire-level description of a command.

    Attributes:
        name: Event name clients emit
        subject: Prefix of every error body this command sends
        arity: Number of payload arguments before the callback
        refresh: Re-read the caller's user document before running
    """
    name: str
    subject: str
    arity: int = 1
    refresh: bool = True


@dataclass(frozen=True, slots=True)
class Command:
    spec: CommandSpec
    handler: Handler


def command(
    name: str,
    subject: str,
    arity: int = 1,
    refresh: bool = True,
) -> Callable[[Handler], Handler]:
    """
    Mark a session coroutine method as the handler of a command.

    The method is called as `handler(reply, *payload)`.
    """
    spec = CommandSpec(name=name, subject=subject, arity=arity, refresh=refresh)

    def decorator(fn: Handler) -> Handler:
        fn.command_spec = spec  # type: ignore[attr-defined]
        return fn

    return decorator


def build_table(owner: Any, names: tuple[str, ...]) -> dict[str, Command]:
    """Collect the decorated handlers of `owner` for the given command names."""
    by_name: dict[str, Command] = {}
    for attr in dir(type(owner)):
        fn = getattr(type(owner), attr, None)
        spec: Optional[CommandSpec] = getattr(fn, "command_spec", None)
        if spec is not None and spec.name in names:
            by_name[spec.name] = Command(spec=spec, handler=getattr(owner, attr))
    missing = set(names) - set(by_name)
    if missing:
        raise ValueError(f"No handler for commands: {sorted(missing)}")
    return {name: by_name[name] for name in names}


# =============================================================================
# COMMAND HOST
# =============================================================================
class CommandHost(Protocol):
    """The session side of command execution."""

    @property
    def log(self) -> StructuredLogger: ...

    @property
    def metrics(self) -> SessionMetrics: ...

    def send_message(self, body: str, title: str = C.MESSAGE_TITLE_ERROR) -> None: ...

    async def refresh_user(self) -> Result[Document, SessionError]: ...

    def fail_session(self, error: SessionError) -> None: ...


# =============================================================================
# REPLY
# =============================================================================
class Reply:
    """
    Settles one command invocation.

    The callback is invoked at most once; later settle calls only send
    their message.
    """

    __slots__ = ("_host", "_spec", "_callback", "_settled", "_outcome")

    def __init__(
        self,
        host: CommandHost,
        spec: CommandSpec,
        callback: Callable[[Any], Any],
    ) -> None:
        self._host = host
        self._spec = spec
        self._callback = callback
        self._settled = False
        self._outcome = "unsettled"

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def outcome(self) -> str:
        return self._outcome

    def _settle(self, value: Any, outcome: str) -> None:
        if self._settled:
            return
        self._settled = True
        self._outcome = outcome
        self._callback(value)

    def ok(self, value: Any = True) -> None:
        self._settle(value, "ok")

    def fail(self, body: str) -> None:
        self._host.send_message(self._spec.subject + body)
        self._settle(False, "failed")

    def fail_with(self, error: MentorSyncError) -> None:
        if isinstance(error, StorageError):
            self._host.log.error(
                "Storage failure in command",
                command=self._spec.name,
                error=error.to_dict(),
            )
            self.fail(C.GENERIC_FAILURE_BODY)
            return
        self.fail(error.message)

    def degrade(self) -> None:
        """Report an unexpected failure generically."""
        self._host.send_message(self._spec.subject + C.GENERIC_FAILURE_BODY)
        if not self._settled:
            self._settled = True
            self._outcome = "error"
            try:
                self._callback(False)
            except Exception:
                self._host.log.exception("Callback raised", command=self._spec.name)


# =============================================================================
# EXECUTION
# =============================================================================
async def run_command(host: CommandHost, cmd: Command, args: tuple[Any, ...]) -> None:
    """Execute `cmd` under the command contract."""
    spec = cmd.spec
    padded = list(args[: spec.arity + 1])
    padded.extend([None] * (spec.arity + 1 - len(padded)))
    payload, callback = padded[: spec.arity], padded[spec.arity]

    if not callable(callback):
        host.send_message(spec.subject + C.NO_CALLBACK_BODY)
        host.metrics.commands.inc(command=spec.name, outcome="refused")
        host.log.warning("Command refused without callback", command=spec.name)
        return

    with host.metrics.command_seconds.time(command=spec.name):
        if spec.refresh:
            refreshed = await host.refresh_user()
            if refreshed.is_err():
                host.fail_session(refreshed.error)
                host.metrics.commands.inc(command=spec.name, outcome="aborted")
                return

        reply = Reply(host, spec, callback)
        try:
            await cmd.handler(reply, *payload)
        except Exception:
            host.log.exception("Command handler raised", command=spec.name)
            reply.degrade()
        else:
            if not reply.settled:
                host.log.error("Command finished without settling", command=spec.name)
                reply.degrade()

    host.metrics.commands.inc(command=spec.name, outcome=reply.outcome)


# =============================================================================
# ROUTER
# =============================================================================
class CommandRouter:
    """
    Installs one command table at a time on a connection.

    Usage:
        router = CommandRouter(connection, dispatch)
        router.install(build_table(session, ("createUser",)))
        router.install({})  # remove everything
    """

    __slots__ = ("_connection", "_dispatch", "_table", "_listeners", "_generation")

    def __init__(
        self,
        connection: Connection,
        dispatch: Callable[[Command, tuple[Any, ...]], Awaitable[None]],
    ) -> None:
        self._connection = connection
        self._dispatch = dispatch
        self._table: dict[str, Command] = {}
        self._listeners: dict[str, Callable[..., Awaitable[None]]] = {}
        self._generation = 0

    def install(self, table: Mapping[str, Command]) -> None:
        for name, listener in self._listeners.items():
            self._connection.off(name, listener)
        self._listeners = {}

        self._generation += 1
        self._table = dict(table)

        for name in self._table:
            listener = self._make_listener(name, self._generation)
            self._listeners[name] = listener
            self._connection.on(name, listener)

    def clear(self) -> None:
        self.install({})

    def _make_listener(self, name: str, generation: int) -> Callable[..., Awaitable[None]]:
        async def listener(*args: Any) -> None:
            if generation != self._generation or name not in self._table:
                logger.debug("Dropping stale command %s", name)
                return
            await self._dispatch(self._table[name], args)

        return listener

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._table)

    @property
    def generation(self) -> int:
        return self._generation
