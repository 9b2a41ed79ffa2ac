"""Connection lifecycle supervision.

The supervisor owns the transport session:

    DISCONNECTED -> CONNECTING -> ONLINE -> DISCONNECTED -> ...
                                      \\-> LOGGED_OUT (terminal)

Each session is built from freshly loaded credentials and gets a freshly
built message pipeline. A "logged out" disconnect is terminal because the
stored credentials are no longer valid and retrying would loop forever.
Any other disconnect schedules exactly one restart after a fixed delay.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from hookbridge.core.models import DisconnectReason, SessionStats
from hookbridge.core.ports import MessageHandler, TransportSession

LOGGER = logging.getLogger(__name__)

DEFAULT_RESTART_DELAY_SECONDS = 1.5

SessionFactory = Callable[[], Awaitable[TransportSession]]
PipelineFactory = Callable[[TransportSession], MessageHandler]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ONLINE = "online"
    LOGGED_OUT = "logged_out"


class ConnectionSupervisor:
    """Keep one transport session alive across transient disconnects."""

    def __init__(
        self,
        session_factory: SessionFactory,
        pipeline_factory: PipelineFactory,
        *,
        pairing_phone_number: Optional[str] = None,
        restart_delay: float = DEFAULT_RESTART_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._pipeline_factory = pipeline_factory
        self._pairing_phone_number = pairing_phone_number or None
        self._restart_delay = restart_delay
        self._sleep = sleep
        self._pairing_requested = False
        self._state = ConnectionState.DISCONNECTED
        self.stats = SessionStats()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, state: ConnectionState) -> None:
        if state != self._state:
            LOGGER.debug("Connection state %s -> %s", self._state.value, state.value)
        self._state = state

    async def run(self) -> DisconnectReason:
        """Run sessions until the transport reports a logged-out session.

        Errors while building or starting a session (for example a failed
        credential load) propagate and stop the supervisor.
        """

        while True:
            reason = await self._run_session()
            self.stats.reasons.append(reason)

            if reason.logged_out:
                self._transition(ConnectionState.LOGGED_OUT)
                LOGGER.error(
                    "Logged out (%s). Clear the stored credentials and restart to re-pair.",
                    reason.detail,
                )
                return reason

            self._transition(ConnectionState.DISCONNECTED)
            LOGGER.warning(
                "Connection closed (%s); reconnecting in %.1fs",
                reason.detail or "no reason",
                self._restart_delay,
            )
            await self._sleep(self._restart_delay)
            self.stats.restarts += 1

    async def _run_session(self) -> DisconnectReason:
        self._transition(ConnectionState.CONNECTING)
        session = await self._session_factory()
        try:
            await session.connect()
            await self._ensure_registered(session)

            # The pipeline is rebuilt for every session; nothing from the
            # previous session's event flow carries over.
            await session.start(self._pipeline_factory(session))
            self.stats.sessions_started += 1
            self._transition(ConnectionState.ONLINE)
            LOGGER.info("Session online as %s. Listening for incoming messages...", session.self_id)

            return await session.run_until_disconnected()
        finally:
            await session.close()

    async def _ensure_registered(self, session: TransportSession) -> None:
        if await session.is_registered():
            return

        if self._pairing_phone_number and not self._pairing_requested:
            self._pairing_requested = True
            self.stats.pairing_requests += 1
            code = await session.request_pairing_code(self._pairing_phone_number)
            LOGGER.info("Pairing code requested for %s: %s", self._pairing_phone_number, code)
        else:
            LOGGER.info(
                "Not registered yet. Set PAIRING_PHONE_NUMBER to request a pairing code; "
                "waiting for the transport login handshake."
            )
        await session.wait_for_registration()
