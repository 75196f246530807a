"""
Celery Tasks
Delayed notification delivery for the celery scheduler backend.

Each follow-up is enqueued with an ETA at order time. When it comes due the
worker runs the same NotificationDispatcher as the in-process scheduler, so
the sent flags in the orders table decide whether anything is sent. Tasks
are never retried: a missed follow-up stays missed.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from orderbot.celery_worker import celery_app
from orderbot.core.config import get_settings
from orderbot.core.exceptions import ChannelError
from orderbot.database import Database
from orderbot.models import NotificationKind
from orderbot.scheduler import (
    NotificationDelays,
    NotificationDispatcher,
    NotificationOutcome,
    NotificationTask,
)
from orderbot.services.channel import get_channel
from orderbot.store import OrderStore

logger = logging.getLogger(__name__)


async def _fire(task: NotificationTask) -> NotificationOutcome:
    settings = get_settings()
    database = Database.from_settings(settings)
    channel = get_channel(settings)
    try:
        try:
            await channel.start()
        except ChannelError as e:
            logger.error(
                f"❌ Order #{task.order_id} {task.kind.value} notification permanently missed: {e.message}"
            )
            return NotificationOutcome.MISSED

        dispatcher = NotificationDispatcher(
            store=OrderStore(database),
            channel=channel,
            templates=settings.notification_templates,
            policy=settings.notification_policy,
            send_timeout=settings.send_timeout_seconds,
        )
        return await dispatcher.fire(task)
    finally:
        await channel.stop()
        await database.dispose()


@celery_app.task(bind=True, max_retries=0)
def deliver_notification(self, order_id: int, kind: str, fire_at: str) -> dict:
    """
    Fire one follow-up notification.

    Args:
        order_id: Order the notification belongs to
        kind: NotificationKind value
        fire_at: ISO timestamp the task was due at

    Returns:
        dict: Outcome of the delivery attempt
    """
    task = NotificationTask(order_id, NotificationKind(kind), datetime.fromisoformat(fire_at))
    logger.info(f"📋 Task {self.request.id}: order #{order_id} {kind}")

    outcome = asyncio.run(_fire(task))

    return {
        'order_id': order_id,
        'kind': kind,
        'outcome': outcome.value,
        'task_id': self.request.id,
        'timestamp': datetime.now().isoformat(),
    }


class CeleryNotificationQueue:
    """Hands follow-ups to Celery with an ETA instead of holding them in-process."""

    def __init__(self, delays: Optional[NotificationDelays] = None):
        self.delays = delays or NotificationDelays()

    def schedule(self, task: NotificationTask) -> None:
        deliver_notification.apply_async(
            args=[task.order_id, task.kind.value, task.fire_at.isoformat()],
            eta=task.fire_at,
        )
        logger.debug(f"Enqueued order #{task.order_id} {task.kind.value} for {task.fire_at.isoformat()}")

    def schedule_order(self, order_id: int, created_at: datetime) -> list[NotificationTask]:
        tasks = self.delays.tasks_for(order_id, created_at)
        for task in tasks:
            self.schedule(task)
        return tasks
