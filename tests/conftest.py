"""Shared fixtures: temporary SQLite database, manual clock, mock channel."""

from decimal import Decimal

import pytest

from orderbot.bootstrap import build_services
from orderbot.core.config import Settings
from orderbot.database import Database
from orderbot.services.channel.mock import MockChannel
from orderbot.store import OrderStore

from tests.factories import ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        env_mode="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        delivery_fee=Decimal("5.00"),
        confirmation_delay_seconds=30,
        dispatch_delay_seconds=1800,
        send_timeout_seconds=1.0,
        mock_pairing_delay_seconds=0,
    )


@pytest.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.init()
    yield db
    await db.dispose()


@pytest.fixture
def store(database, clock):
    return OrderStore(database, clock)


@pytest.fixture
def channel():
    return MockChannel(min_latency=0, max_latency=0, pairing_delay=0)


@pytest.fixture
async def services(settings, database, channel, clock):
    """Wired services with a connected mock channel, no background loops."""
    services = build_services(settings, channel=channel, database=database, clock=clock)
    await channel.start()
    yield services
    await services.supervisor.shutdown()

