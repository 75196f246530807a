"""
Channel Readiness Gate

Tracks the lifecycle of the chat channel and tells the order flow whether
submissions can be accepted right now.

    initializing ──► pairing_pending ──► authenticated ──► ready
         ▲                                                   │
         └──────────────── disconnected ◄────────────────────┘

Events may arrive late or out of order; the most recent event always wins,
so the gate eventually reflects the latest transition reported by the
client. Transitions outside the diagram are logged, not rejected.
"""

import asyncio
import enum
import logging
from typing import Callable, Optional

from orderbot.core.exceptions import ChannelError, ChannelUnavailableError
from orderbot.services.channel.base import BaseChannel, ChannelEvent

logger = logging.getLogger(__name__)


class ChannelState(str, enum.Enum):
    INITIALIZING = "initializing"
    PAIRING_PENDING = "pairing_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"


EVENT_TARGETS = {
    ChannelEvent.INITIALIZE: ChannelState.INITIALIZING,
    ChannelEvent.QR: ChannelState.PAIRING_PENDING,
    ChannelEvent.AUTHENTICATED: ChannelState.AUTHENTICATED,
    ChannelEvent.READY: ChannelState.READY,
    ChannelEvent.AUTH_FAILURE: ChannelState.DISCONNECTED,
    ChannelEvent.DISCONNECTED: ChannelState.DISCONNECTED,
}

EXPECTED_TRANSITIONS = {
    ChannelState.INITIALIZING: {
        ChannelState.PAIRING_PENDING,
        ChannelState.AUTHENTICATED,  # session restored, no QR needed
        ChannelState.DISCONNECTED,
    },
    ChannelState.PAIRING_PENDING: {
        ChannelState.PAIRING_PENDING,  # QR refreshed
        ChannelState.AUTHENTICATED,
        ChannelState.DISCONNECTED,
    },
    ChannelState.AUTHENTICATED: {ChannelState.READY, ChannelState.DISCONNECTED},
    ChannelState.READY: {ChannelState.DISCONNECTED},
    ChannelState.DISCONNECTED: {ChannelState.INITIALIZING},
}


def next_state(state: ChannelState, event: ChannelEvent) -> ChannelState:
    """State after `event`; unexpected transitions are adopted with a warning."""
    target = EVENT_TARGETS[event]
    if target != state and target not in EXPECTED_TRANSITIONS[state]:
        logger.warning(f"Unexpected channel transition {state.value} -> {target.value} ({event.value})")
    return target


StateListener = Callable[[ChannelState, ChannelState], None]


class ChannelReadinessGate:
    """Current channel state plus change notifications."""

    def __init__(self, initial: ChannelState = ChannelState.INITIALIZING):
        self._state = initial
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ChannelState.READY

    def subscribe(self, listener: StateListener) -> None:
        """Call `listener(old, new)` on every state change."""
        self._listeners.append(listener)

    def attach(self, channel: BaseChannel) -> None:
        """Follow the events of a channel client."""
        channel.add_listener(self.handle)

    def handle(self, event: ChannelEvent) -> ChannelState:
        old = self._state
        new = next_state(old, event)
        if new == old:
            return new

        self._state = new
        if new == ChannelState.READY:
            logger.info("✅ Chat channel ready")
        elif new == ChannelState.DISCONNECTED:
            logger.warning(f"Chat channel unavailable ({event.value})")
        else:
            logger.info(f"Chat channel state: {old.value} -> {new.value}")

        for listener in list(self._listeners):
            listener(old, new)
        return new

    def ensure_ready(self) -> None:
        """Raise ChannelUnavailableError unless the channel is ready."""
        if not self.is_ready:
            raise ChannelUnavailableError(detail=f"channel state is {self._state.value}")


class ChannelSupervisor:
    """
    Keeps the channel connected.

    Starts the client, restarts it `reconnect_delay` seconds after a
    disconnect, and retries after `init_retry_delay` when start() fails.
    """

    def __init__(
        self,
        channel: BaseChannel,
        gate: ChannelReadinessGate,
        reconnect_delay: float = 20.0,
        init_retry_delay: float = 60.0,
    ):
        self.channel = channel
        self.gate = gate
        self.reconnect_delay = reconnect_delay
        self.init_retry_delay = init_retry_delay
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        gate.attach(channel)
        gate.subscribe(self._on_state_change)

    def start(self) -> None:
        self._stopping = False
        self._launch(0)

    async def shutdown(self) -> None:
        self._stopping = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.channel.stop()

    def _on_state_change(self, old: ChannelState, new: ChannelState) -> None:
        if new == ChannelState.DISCONNECTED and not self._stopping:
            logger.info(f"Reconnecting chat channel in {self.reconnect_delay:.0f}s")
            self._launch(self.reconnect_delay)

    def _launch(self, delay: float) -> None:
        if self._task and not self._task.done():
            if self._task is asyncio.current_task():
                # Disconnect reported while connecting; the running attempt
                # schedules the retry itself.
                return
            self._task.cancel()
        self._task = asyncio.create_task(self._connect(delay))

    async def _connect(self, delay: float) -> None:
        while not self._stopping:
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.channel.start()
                return
            except ChannelError as e:
                logger.error(f"Chat channel failed to start: {e.message}")
                if self.gate.state != ChannelState.DISCONNECTED:
                    self.gate.handle(ChannelEvent.DISCONNECTED)
                delay = self.init_retry_delay
                logger.info(f"Retrying chat channel in {delay:.0f}s")
