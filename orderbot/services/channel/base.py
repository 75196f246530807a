"""
Chat Channel Abstract Base Class

Defines the interface the order flow needs from the messaging channel:
a send capability, a registration check and a stream of lifecycle events
consumed by the readiness gate. Both the mock (development) and the Twilio
WhatsApp (production) implementations follow this contract.
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ChannelEvent(str, enum.Enum):
    """Lifecycle events reported by a channel client."""
    INITIALIZE = "initialize"
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass
class SendResult:
    """Result from sending one message."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


EventListener = Callable[[ChannelEvent], None]


class BaseChannel(ABC):
    """Abstract base class for chat channels."""

    def __init__(self):
        self._listeners: list[EventListener] = []

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Connect the client; progress is reported through events."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Release the client."""
        pass

    @abstractmethod
    async def send(self, phone: str, text: str) -> SendResult:
        """Send a text message to a canonical phone."""
        pass

    @abstractmethod
    async def is_registered(self, phone: str) -> bool:
        """Check that the phone has an account on the channel."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    # =========================================================================
    # EVENTS
    # =========================================================================

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: ChannelEvent) -> None:
        logger.debug(f"{self.provider_name} channel event: {event.value}")
        for listener in list(self._listeners):
            listener(event)

    # =========================================================================
    # BOUNDED SEND
    # =========================================================================

    async def send_with_timeout(self, phone: str, text: str, timeout: float) -> SendResult:
        """
        send() bounded by `timeout` seconds.

        A timeout or an unexpected client exception is reported as a failed
        SendResult, never raised.
        """
        try:
            return await asyncio.wait_for(self.send(phone, text), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Send to {phone} timed out after {timeout}s")
            return SendResult(
                success=False,
                error_message=f"Timed out after {timeout}s",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.exception(f"Send to {phone} failed: {e}")
            return SendResult(
                success=False,
                error_message=str(e),
                provider=self.provider_name,
            )
