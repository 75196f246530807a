"""
Service wiring.

Builds every long-lived object (database, store, channel, gate, scheduler,
order service) from Settings and owns their startup and shutdown order.
The FastAPI app keeps one AppServices on app.state; tests build their own
with fakes.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from orderbot.core.clock import Clock, SystemClock
from orderbot.core.config import SchedulerBackend, Settings
from orderbot.database import Database
from orderbot.gate import ChannelReadinessGate, ChannelSupervisor
from orderbot.orders import NotificationQueue, OrderService
from orderbot.scheduler import NotificationDelays, NotificationDispatcher, NotificationScheduler
from orderbot.services.channel import BaseChannel, get_channel
from orderbot.store import OrderStore

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: Settings
    database: Database
    store: OrderStore
    channel: BaseChannel
    gate: ChannelReadinessGate
    supervisor: ChannelSupervisor
    notifications: NotificationQueue
    orders: OrderService

    @property
    def scheduler(self) -> Optional[NotificationScheduler]:
        if isinstance(self.notifications, NotificationScheduler):
            return self.notifications
        return None

    async def start(self) -> None:
        await self.database.init()

        if self.scheduler is not None:
            window = timedelta(minutes=self.settings.rearm_window_minutes)
            await self.scheduler.rearm(self.store, window)
            self.scheduler.start()

        self.supervisor.start()

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        await self.supervisor.shutdown()
        await self.database.dispose()


def build_services(
    settings: Settings,
    *,
    channel: Optional[BaseChannel] = None,
    database: Optional[Database] = None,
    clock: Optional[Clock] = None,
) -> AppServices:
    clock = clock or SystemClock()
    database = database or Database.from_settings(settings)
    channel = channel or get_channel(settings)

    store = OrderStore(database, clock)
    gate = ChannelReadinessGate()
    supervisor = ChannelSupervisor(
        channel,
        gate,
        reconnect_delay=settings.channel_reconnect_delay_seconds,
        init_retry_delay=settings.channel_init_retry_delay_seconds,
    )
    delays = NotificationDelays(
        confirmation=timedelta(seconds=settings.confirmation_delay_seconds),
        dispatch=timedelta(seconds=settings.dispatch_delay_seconds),
    )

    if settings.scheduler_backend == SchedulerBackend.CELERY:
        from orderbot.tasks import CeleryNotificationQueue

        notifications = CeleryNotificationQueue(delays)
        logger.info("Notification backend: Celery")
    else:
        dispatcher = NotificationDispatcher(
            store=store,
            channel=channel,
            templates=settings.notification_templates,
            policy=settings.notification_policy,
            send_timeout=settings.send_timeout_seconds,
        )
        notifications = NotificationScheduler(dispatcher, delays, clock)
        logger.info("Notification backend: in-process scheduler")

    orders = OrderService(gate, store, channel, notifications, settings, clock)

    return AppServices(
        settings=settings,
        database=database,
        store=store,
        channel=channel,
        gate=gate,
        supervisor=supervisor,
        notifications=notifications,
        orders=orders,
    )
