"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from orderbot.core.config import get_settings, Settings, EnvironmentMode
from orderbot.core.exceptions import (
    OrderBotError,
    InvalidOrderError,
    ChannelUnavailableError,
    PersistenceError,
    ReceiptDeliveryError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderBotError",
    "InvalidOrderError",
    "ChannelUnavailableError",
    "PersistenceError",
    "ReceiptDeliveryError",
]
