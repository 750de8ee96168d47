#!/usr/bin/env python3
"""
MentorSync

Main entry point: loads configuration, starts the server and walks two
users through account creation and a full mentorship request over
in-memory connections.

Usage:
    python -m mentorsync

    # Or against Redis
    MENTORSYNC_STORAGE_BACKEND=redis MENTORSYNC_REDIS_HOST=localhost python -m mentorsync
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

from mentorsync.core import constants as C
from mentorsync.core.config import MentorSyncConfig
from mentorsync.models.user import Identity
from mentorsync.observability.logging import LogLevel, setup_logging
from mentorsync.server import MentorSyncServer
from mentorsync.session.connection import InMemoryConnection


async def demo_local_mode() -> None:
    """Two users: a mentor and a mentee who asks to be mentored."""
    print("\n" + "=" * 60)
    print("MentorSync - Local Walkthrough")
    print("=" * 60 + "\n")

    config_result = MentorSyncConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)

    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    print("✓ Configuration loaded and validated")
    print(f"  Storage: {config.storage.backend.name.lower()}")

    setup_logging(LogLevel.parse(config.observability.log_level), json_output=config.observability.log_json)

    server = MentorSyncServer(config)
    started = await server.startup()
    if started.is_err():
        print(f"Startup error: {started.error}")
        sys.exit(1)
    print(f"✓ Server started ({len(server.index)} accepting mentors indexed)")

    print("\n--- Walkthrough ---\n")

    mentor_conn = InMemoryConnection("mentor-device")
    mentee_conn = InMemoryConnection("mentee-device")
    mentor = await server.accept(mentor_conn, Identity(subject="demo|mentor", email="grace@example.com"))
    mentee = await server.accept(mentee_conn, Identity(subject="demo|mentee", email="alan@example.com"))
    print(f"1. Connected: mentor={mentor.state.value} mentee={mentee.state.value}")

    async def call(conn: InMemoryConnection, cmd: str, *args: Any) -> Any:
        result = await conn.call(cmd, *args)
        for message in conn.messages():
            print(f"   ! {message['body']}")
        conn.clear()
        return result

    await call(mentor_conn, C.CMD_CREATE_USER, {"fName": "Grace", "lName": "Hopper", "username": "grace"})
    await call(mentee_conn, C.CMD_CREATE_USER, {"fName": "Alan", "lName": "Turing", "username": "alan"})
    print(f"2. Accounts created: mentor={mentor.state.value} mentee={mentee.state.value}")

    await call(mentor_conn, C.CMD_UPDATE_PROFILE, {"isMentor": True, "acceptingMentees": True})
    mentors = await call(mentee_conn, C.CMD_GET_ALL_MENTORS)
    print(f"3. Mentee sees {len(mentors or [])} accepting mentor(s)")

    sent = await call(mentee_conn, C.CMD_MENTORSHIP_REQUEST, {"action": "send", "mentorID": mentor.user_id})
    request = await call(mentee_conn, C.CMD_GET_REQUEST_BETWEEN, mentor.user_id, mentee.user_id)
    print(f"4. Request sent: {sent} (id={request['id'] if request else None})")

    accepted = await call(
        mentor_conn,
        C.CMD_MENTORSHIP_REQUEST,
        {"action": "accept", "mentorshipRequestID": request["id"] if request else None},
    )
    print(f"5. Request accepted: {accepted}")

    profile = await call(mentor_conn, C.CMD_GET_USER, mentee.user_id)
    print(f"6. Mentee's mentor is now {profile.get('mentorID') if profile else None}")

    print("\n--- Metrics ---\n")
    print(server.collector.export_prometheus())

    await server.shutdown()
    print("\n✓ Walkthrough complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo_local_mode()
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
