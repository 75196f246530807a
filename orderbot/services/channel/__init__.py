"""
Chat Channel Factory

Returns the mock or the Twilio WhatsApp channel based on ENV_MODE.

Environment Switching:
    - ENV_MODE=development → MockChannel (QR pairing simulated, nothing sent)
    - ENV_MODE=staging → TwilioWhatsAppChannel (sandbox number)
    - ENV_MODE=production → TwilioWhatsAppChannel
"""

import logging

from orderbot.core.config import Settings
from orderbot.services.channel.base import (
    BaseChannel,
    ChannelEvent,
    SendResult,
)
from orderbot.services.channel.mock import MockChannel
from orderbot.services.channel.twilio import TwilioWhatsAppChannel

logger = logging.getLogger(__name__)


def get_channel(settings: Settings) -> BaseChannel:
    """Build the configured channel adapter."""
    if settings.is_development:
        logger.info("Chat Channel: Using MockChannel (development mode)")
        return MockChannel(
            failure_rate=settings.mock_channel_failure_rate,
            pairing_delay=settings.mock_pairing_delay_seconds,
        )

    logger.info(f"Chat Channel: Using TwilioWhatsAppChannel ({settings.env_mode.value} mode)")
    return TwilioWhatsAppChannel(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_whatsapp_number,
    )


__all__ = [
    "get_channel",
    "BaseChannel",
    "ChannelEvent",
    "SendResult",
    "MockChannel",
    "TwilioWhatsAppChannel",
]
