"""
Notification Scheduler

Each order gets two deferred follow-ups (confirmation, dispatch). A follow-up
is a NotificationTask: which order, which kind, and the earliest moment it
may fire. Tasks are plain values; nothing about a timer is persisted. After
a restart the scheduler re-creates tasks from the order rows and relies on
the per-order flags to drop the ones that already fired.

Every send attempt is preceded by a conditional UPDATE (a claim under
send-then-mark, the sent flag itself under mark-then-send). Only one caller
can win it, so overlapping processes and Celery redeliveries never send the
same (order, kind) twice. Voided orders win nothing.

Per (order, kind):

    Pending ──► Due ──► Sent | Skipped | Missed

Sent, Skipped and Missed are terminal. A missed notification (send failed or
timed out) is logged and never retried: a late "your order is on the way"
is worse than none.
"""

import asyncio
import enum
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Optional

from orderbot.core.clock import Clock, SystemClock, as_utc
from orderbot.core.config import NotificationPolicy
from orderbot.core.exceptions import PersistenceError
from orderbot.models import NotificationKind
from orderbot.receipt import render_notification
from orderbot.services.channel.base import BaseChannel
from orderbot.store import OrderStore

logger = logging.getLogger(__name__)


class NotificationOutcome(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    MISSED = "missed"


@dataclass(frozen=True)
class NotificationTask:
    order_id: int
    kind: NotificationKind
    fire_at: datetime

    @property
    def key(self) -> tuple[int, NotificationKind]:
        """Idempotency key: at most one delivered message per key."""
        return (self.order_id, self.kind)


@dataclass
class NotificationDelays:
    confirmation: timedelta = timedelta(seconds=30)
    dispatch: timedelta = timedelta(minutes=30)

    def for_kind(self, kind: NotificationKind) -> timedelta:
        return self.confirmation if kind == NotificationKind.CONFIRMATION else self.dispatch

    def tasks_for(self, order_id: int, created_at: datetime) -> list[NotificationTask]:
        created_at = as_utc(created_at)
        return [
            NotificationTask(order_id, kind, created_at + self.for_kind(kind))
            for kind in NotificationKind
        ]


class NotificationDispatcher:
    """
    Fires one due task.

    Shared by the in-process scheduler and the Celery worker, so both
    backends apply the same flag discipline.
    """

    def __init__(
        self,
        store: OrderStore,
        channel: BaseChannel,
        templates: Mapping[str, str],
        policy: NotificationPolicy = NotificationPolicy.SEND_THEN_MARK,
        send_timeout: float = 15.0,
    ):
        self.store = store
        self.channel = channel
        self.templates = templates
        self.policy = policy
        self.send_timeout = send_timeout
        self._in_flight: set[tuple[int, NotificationKind]] = set()

    async def fire(self, task: NotificationTask) -> NotificationOutcome:
        if task.key in self._in_flight:
            logger.info(f"Order #{task.order_id} {task.kind.value}: already firing, skipped")
            return NotificationOutcome.SKIPPED

        self._in_flight.add(task.key)
        try:
            if self.policy == NotificationPolicy.MARK_THEN_SEND:
                return await self._mark_then_send(task)
            return await self._send_then_mark(task)
        finally:
            self._in_flight.discard(task.key)

    async def _send_then_mark(self, task: NotificationTask) -> NotificationOutcome:
        try:
            order = await self.store.get_order(task.order_id)
            if order is None or not order.is_pending(task.kind):
                claimed = False
            else:
                claimed = await self.store.claim(task.order_id, task.kind)
        except PersistenceError:
            logger.error(f"Order #{task.order_id} {task.kind.value}: store unavailable, notification missed")
            return NotificationOutcome.MISSED

        if order is None:
            logger.warning(f"Order #{task.order_id} not found, {task.kind.value} skipped")
            return NotificationOutcome.SKIPPED
        if not claimed:
            logger.info(f"Order #{task.order_id} {task.kind.value}: already sent, claimed or voided, skipped")
            return NotificationOutcome.SKIPPED

        if not await self._deliver(order.customer_phone, task):
            return NotificationOutcome.MISSED

        try:
            newly_marked = await self.store.mark_sent(task.order_id, task.kind)
        except PersistenceError:
            logger.error(
                f"Order #{task.order_id} {task.kind.value}: delivered but could not be recorded"
            )
            return NotificationOutcome.SENT

        if not newly_marked:
            logger.warning(f"Order #{task.order_id} {task.kind.value}: delivered but sent flag was already set")
        return NotificationOutcome.SENT

    async def _mark_then_send(self, task: NotificationTask) -> NotificationOutcome:
        try:
            newly_marked = await self.store.mark_sent(task.order_id, task.kind)
            order = await self.store.get_order(task.order_id) if newly_marked else None
        except PersistenceError:
            logger.error(f"Order #{task.order_id} {task.kind.value}: store unavailable, notification missed")
            return NotificationOutcome.MISSED

        if not newly_marked or order is None:
            logger.info(f"Order #{task.order_id} {task.kind.value}: already sent, skipped")
            return NotificationOutcome.SKIPPED

        if not await self._deliver(order.customer_phone, task):
            return NotificationOutcome.MISSED
        return NotificationOutcome.SENT

    async def _deliver(self, phone: str, task: NotificationTask) -> bool:
        text = render_notification(task.kind, self.templates)
        result = await self.channel.send_with_timeout(phone, text, self.send_timeout)
        if not result.success:
            logger.error(
                f"❌ Order #{task.order_id} {task.kind.value} notification permanently missed: "
                f"{result.error_message}"
            )
            return False
        logger.info(f"✅ Order #{task.order_id} {task.kind.value} notification sent to {phone}")
        return True


@dataclass(order=True)
class _Entry:
    fire_at: datetime
    seq: int
    task: NotificationTask = field(compare=False)


class NotificationScheduler:
    """
    In-process timer queue (asyncio backend).

    Tasks wait in a heap ordered by fire_at. run_due() fires every task whose
    time has come, concurrently; nothing fires before its fire_at. start()
    runs a background loop that sleeps until the next task is due.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        delays: Optional[NotificationDelays] = None,
        clock: Optional[Clock] = None,
    ):
        self.dispatcher = dispatcher
        self.delays = delays or NotificationDelays()
        self.clock = clock or SystemClock()
        self._heap: list[_Entry] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._heap)

    def schedule(self, task: NotificationTask) -> None:
        heapq.heappush(self._heap, _Entry(as_utc(task.fire_at), next(self._seq), task))
        logger.debug(f"Scheduled order #{task.order_id} {task.kind.value} at {task.fire_at.isoformat()}")
        self._wakeup.set()

    def schedule_order(self, order_id: int, created_at: datetime) -> list[NotificationTask]:
        tasks = self.delays.tasks_for(order_id, created_at)
        for task in tasks:
            self.schedule(task)
        return tasks

    def next_fire_at(self) -> Optional[datetime]:
        return self._heap[0].fire_at if self._heap else None

    def _pop_due(self) -> list[NotificationTask]:
        now = self.clock.now()
        due = []
        while self._heap and self._heap[0].fire_at <= now:
            due.append(heapq.heappop(self._heap).task)
        return due

    async def run_due(self) -> list[NotificationOutcome]:
        """Fire every task that is due now and wait for them."""
        return await self._fire_all(self._pop_due())

    async def _fire_all(self, due: list[NotificationTask]) -> list[NotificationOutcome]:
        if not due:
            return []
        return list(await asyncio.gather(*(self.dispatcher.fire(task) for task in due)))

    async def rearm(self, store: OrderStore, window: timedelta) -> int:
        """
        Re-create the tasks of recent orders after a restart.

        Overdue tasks become due immediately. Kinds already sent or claimed
        are not scheduled; the claim at firing time still guards the rest.
        """
        since = self.clock.now() - window
        count = 0
        for order in await store.open_orders(since):
            for task in self.delays.tasks_for(order.id, order.created_at):
                if order.is_pending(task.kind):
                    self.schedule(task)
                    count += 1
        logger.info(f"Re-armed {count} pending notification(s)")
        return count

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run())

    async def shutdown(self) -> None:
        tasks = list(self._running)
        if self._loop_task:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        if self._heap:
            logger.info(f"Scheduler stopped with {len(self._heap)} pending notification(s)")

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()
            next_at = self.next_fire_at()
            timeout = None
            if next_at is not None:
                timeout = max((next_at - self.clock.now()).total_seconds(), 0)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
                continue
            except asyncio.TimeoutError:
                pass

            due = self._pop_due()
            if not due:
                continue
            batch = asyncio.create_task(self._fire_all(due))
            self._running.add(batch)
            batch.add_done_callback(self._batch_done)

    def _batch_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Notification batch failed: {task.exception()!r}")
