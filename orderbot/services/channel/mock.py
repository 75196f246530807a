"""
Mock Chat Channel

Simulates the WhatsApp client for development: QR pairing, latency and
occasional send failures. No message leaves the process; every send is
logged and kept in `sent` for inspection.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from orderbot.services.channel.base import BaseChannel, ChannelEvent, SendResult

logger = logging.getLogger(__name__)

QR_LINK = "https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={}"


@dataclass
class SentMessage:
    phone: str
    text: str
    message_id: str
    sent_at: datetime


class MockChannel(BaseChannel):
    """Mock channel for development and tests."""

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.1,
        max_latency: float = 0.3,
        pairing_delay: float = 2.0,
        unregistered: Optional[set[str]] = None,
    ):
        super().__init__()
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.pairing_delay = pairing_delay
        self.unregistered = set(unregistered or ())
        self.sent: list[SentMessage] = []
        self.connected = False
        logger.info(f"MockChannel initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def start(self) -> None:
        """Walk through the pairing lifecycle of a fresh session."""
        self.emit(ChannelEvent.INITIALIZE)

        qr = f"mock-session-{uuid.uuid4().hex[:16]}"
        self.emit(ChannelEvent.QR)
        logger.info(f"Scan the QR code to pair the session:\n{QR_LINK.format(quote(qr))}")

        if self.pairing_delay > 0:
            await asyncio.sleep(self.pairing_delay)

        self.emit(ChannelEvent.AUTHENTICATED)
        self.connected = True
        self.emit(ChannelEvent.READY)
        logger.info("✅ Mock channel ready")

    async def stop(self) -> None:
        self.connected = False

    def disconnect(self, reason: str = "simulated") -> None:
        """Drop the session as if the phone had been logged out."""
        logger.warning(f"Mock channel disconnected: {reason}")
        self.connected = False
        self.emit(ChannelEvent.DISCONNECTED)

    async def send(self, phone: str, text: str) -> SendResult:
        """Simulate sending a message."""
        await self._simulate_latency()

        if not self.connected:
            return SendResult(
                success=False,
                error_message="Channel not connected",
                provider="mock"
            )

        if self._should_fail():
            logger.warning(f"Mock message failed (simulated) to {phone}")
            return SendResult(
                success=False,
                error_message="Simulated send failure",
                provider="mock"
            )

        message_id = f"msg_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append(
            SentMessage(phone, text, message_id, datetime.now(timezone.utc))
        )
        logger.info(f"Mock message sent to {phone}: {text[:50]!r} (ID: {message_id})")

        return SendResult(success=True, message_id=message_id, provider="mock")

    async def is_registered(self, phone: str) -> bool:
        await self._simulate_latency()
        return phone not in self.unregistered

    def messages_to(self, phone: str) -> list[str]:
        return [m.text for m in self.sent if m.phone == phone]

    async def health_check(self) -> bool:
        return self.connected
