"""
Twilio WhatsApp Channel

Production implementation sending WhatsApp messages through the Twilio
Messaging API. The Twilio SDK is blocking, so every call runs in a worker
thread to keep the event loop free.
"""

import asyncio
import logging
from typing import Optional

from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioException, TwilioRestException

from orderbot.core.exceptions import ChannelError
from orderbot.services.channel.base import BaseChannel, ChannelEvent, SendResult

logger = logging.getLogger(__name__)

# Twilio answers 401 when the credentials were revoked or rotated
UNAUTHORIZED = 401


class TwilioWhatsAppChannel(BaseChannel):
    """WhatsApp channel backed by Twilio."""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
    ):
        super().__init__()
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.client: Optional[TwilioClient] = None

    @property
    def provider_name(self) -> str:
        return "twilio"

    @staticmethod
    def address_for(phone: str) -> str:
        return f"whatsapp:+{phone}"

    async def start(self) -> None:
        """Create the client and verify the credentials."""
        self.emit(ChannelEvent.INITIALIZE)

        if not (self.account_sid and self.auth_token and self.from_number):
            raise ChannelError("Twilio credentials not configured")

        client = TwilioClient(self.account_sid, self.auth_token)
        try:
            account = await asyncio.to_thread(
                client.api.v2010.accounts(self.account_sid).fetch
            )
        except TwilioRestException as e:
            self.emit(ChannelEvent.AUTH_FAILURE)
            raise ChannelError(f"Twilio authentication failed: {e.msg}") from e
        except TwilioException as e:
            raise ChannelError(f"Twilio unreachable: {e}") from e

        self.client = client
        self.emit(ChannelEvent.AUTHENTICATED)
        logger.info(f"Twilio account verified: {account.friendly_name}")
        self.emit(ChannelEvent.READY)

    async def stop(self) -> None:
        self.client = None

    async def send(self, phone: str, text: str) -> SendResult:
        """Send a WhatsApp message via Twilio."""
        if not self.client:
            return SendResult(
                success=False,
                error_message="Twilio not connected",
                provider="twilio"
            )

        try:
            result = await asyncio.to_thread(
                self.client.messages.create,
                body=text,
                from_=self.address_for(self.from_number.lstrip("+")),
                to=self.address_for(phone),
            )
        except TwilioRestException as e:
            logger.error(f"Twilio error sending to {phone}: {e.msg}")
            if e.status == UNAUTHORIZED:
                self.client = None
                self.emit(ChannelEvent.DISCONNECTED)
            return SendResult(
                success=False,
                error_message=str(e.msg),
                provider="twilio"
            )
        except TwilioException as e:
            logger.error(f"Twilio error sending to {phone}: {e}")
            return SendResult(
                success=False,
                error_message=str(e),
                provider="twilio"
            )

        logger.info(f"WhatsApp message sent to {phone}: {result.sid}")
        return SendResult(success=True, message_id=result.sid, provider="twilio")

    async def is_registered(self, phone: str) -> bool:
        # Twilio exposes no WhatsApp registration lookup; undeliverable
        # numbers surface as failed sends instead.
        return True

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            await asyncio.to_thread(
                self.client.api.v2010.accounts(self.account_sid).fetch
            )
            return True
        except TwilioException:
            return False
