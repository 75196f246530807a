import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from orderbot.core.clock import SystemClock
from orderbot.core.config import DEFAULT_CONFIRMATION_MESSAGE, DEFAULT_DISPATCH_MESSAGE, NotificationPolicy
from orderbot.models import NotificationKind
from orderbot.scheduler import (
    NotificationDelays,
    NotificationDispatcher,
    NotificationOutcome,
    NotificationScheduler,
    NotificationTask,
)
from orderbot.schemas import CartItem, OrderSnapshot, PaymentMethod
from orderbot.services.channel.base import SendResult
from orderbot.services.channel.mock import MockChannel

PHONE = "551191234567"
TEMPLATES = {"confirmation": DEFAULT_CONFIRMATION_MESSAGE, "dispatch": DEFAULT_DISPATCH_MESSAGE}


class SlowChannel(MockChannel):
    """Channel whose sends never complete in time."""

    async def send(self, phone, text):
        await asyncio.sleep(10)
        return SendResult(success=True, provider="slow")


async def place_order(store):
    await store.upsert_customer(PHONE, "Ana", "Rua A, 1")
    snapshot = OrderSnapshot(
        cart=[CartItem(name="X-Burger", price=Decimal("10.00"), quantity=1)],
        payment_method=PaymentMethod.PIX,
    )
    return await store.create_order(PHONE, snapshot)


def make_scheduler(store, channel, clock, policy=NotificationPolicy.SEND_THEN_MARK, send_timeout=1.0):
    dispatcher = NotificationDispatcher(store, channel, TEMPLATES, policy=policy, send_timeout=send_timeout)
    return NotificationScheduler(dispatcher, NotificationDelays(), clock)


@pytest.fixture
async def connected(channel):
    await channel.start()
    return channel


def test_tasks_for_uses_creation_time():
    delays = NotificationDelays()
    created = SystemClock().now()

    confirmation, dispatch = delays.tasks_for(7, created)

    assert confirmation == NotificationTask(7, NotificationKind.CONFIRMATION, created + timedelta(seconds=30))
    assert dispatch == NotificationTask(7, NotificationKind.DISPATCH, created + timedelta(minutes=30))
    assert confirmation.key == (7, NotificationKind.CONFIRMATION)


async def test_nothing_fires_before_its_time(store, connected, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, connected, clock)
    scheduler.schedule_order(order_id, clock.now())

    clock.advance(seconds=29)
    assert await scheduler.run_due() == []
    assert connected.sent == []
    assert scheduler.pending == 2


async def test_confirmation_then_dispatch(store, connected, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, connected, clock)
    scheduler.schedule_order(order_id, clock.now())

    clock.advance(seconds=30)
    assert await scheduler.run_due() == [NotificationOutcome.SENT]
    assert connected.messages_to(PHONE) == [DEFAULT_CONFIRMATION_MESSAGE]

    order = await store.get_order(order_id)
    assert order.confirmation_sent is True
    assert order.dispatch_sent is False

    clock.advance(minutes=30)
    assert await scheduler.run_due() == [NotificationOutcome.SENT]
    assert connected.messages_to(PHONE) == [DEFAULT_CONFIRMATION_MESSAGE, DEFAULT_DISPATCH_MESSAGE]
    assert (await store.get_order(order_id)).dispatch_sent is True
    assert scheduler.pending == 0


async def test_second_timer_for_same_key_is_skipped(store, connected, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, connected, clock)
    task = NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now())

    scheduler.schedule(task)
    assert await scheduler.run_due() == [NotificationOutcome.SENT]

    scheduler.schedule(task)
    assert await scheduler.run_due() == [NotificationOutcome.SKIPPED]
    assert len(connected.messages_to(PHONE)) == 1


async def test_duplicate_tasks_firing_together_send_once(store, connected, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, connected, clock)
    task = NotificationTask(order_id, NotificationKind.DISPATCH, clock.now())

    scheduler.schedule(task)
    scheduler.schedule(task)
    outcomes = await scheduler.run_due()

    assert sorted(outcomes) == [NotificationOutcome.SENT, NotificationOutcome.SKIPPED]
    assert connected.messages_to(PHONE) == [DEFAULT_DISPATCH_MESSAGE]


async def test_failed_send_is_missed_and_not_marked(store, channel, clock):
    # channel never started: every send fails
    order_id = await place_order(store)
    scheduler = make_scheduler(store, channel, clock)
    scheduler.schedule_order(order_id, clock.now())

    clock.advance(minutes=31)
    outcomes = await scheduler.run_due()

    assert outcomes == [NotificationOutcome.MISSED, NotificationOutcome.MISSED]
    order = await store.get_order(order_id)
    assert order.confirmation_sent is False
    assert order.dispatch_sent is False
    assert scheduler.pending == 0


async def test_send_timeout_is_missed(store, clock):
    order_id = await place_order(store)
    channel = SlowChannel(min_latency=0, max_latency=0, pairing_delay=0)
    scheduler = make_scheduler(store, channel, clock, send_timeout=0.05)
    scheduler.schedule(NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now()))

    assert await scheduler.run_due() == [NotificationOutcome.MISSED]
    assert (await store.get_order(order_id)).confirmation_sent is False


async def test_unknown_order_is_skipped(store, connected, clock):
    scheduler = make_scheduler(store, connected, clock)
    scheduler.schedule(NotificationTask(404, NotificationKind.CONFIRMATION, clock.now()))

    assert await scheduler.run_due() == [NotificationOutcome.SKIPPED]
    assert connected.sent == []


async def test_mark_then_send(store, connected, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, connected, clock, policy=NotificationPolicy.MARK_THEN_SEND)
    task = NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now())

    scheduler.schedule(task)
    scheduler.schedule(task)
    outcomes = await scheduler.run_due()

    assert sorted(outcomes) == [NotificationOutcome.SENT, NotificationOutcome.SKIPPED]
    assert connected.messages_to(PHONE) == [DEFAULT_CONFIRMATION_MESSAGE]
    assert (await store.get_order(order_id)).confirmation_sent is True


async def test_mark_then_send_failure_still_marks(store, channel, clock):
    order_id = await place_order(store)
    scheduler = make_scheduler(store, channel, clock, policy=NotificationPolicy.MARK_THEN_SEND)
    scheduler.schedule(NotificationTask(order_id, NotificationKind.DISPATCH, clock.now()))

    assert await scheduler.run_due() == [NotificationOutcome.MISSED]
    assert (await store.get_order(order_id)).dispatch_sent is True


async def test_two_dispatchers_share_one_delivery(store, connected, clock):
    """Separate workers only coordinate through the sent flag."""
    order_id = await place_order(store)
    first = make_scheduler(store, connected, clock, policy=NotificationPolicy.MARK_THEN_SEND)
    second = make_scheduler(store, connected, clock, policy=NotificationPolicy.MARK_THEN_SEND)
    task = NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now())
    first.schedule(task)
    second.schedule(task)

    outcomes = await asyncio.gather(first.run_due(), second.run_due())

    assert sorted(outcomes[0] + outcomes[1]) == [NotificationOutcome.SENT, NotificationOutcome.SKIPPED]
    assert len(connected.messages_to(PHONE)) == 1


async def test_rearm_after_restart_skips_sent_kinds(store, connected, clock):
    order_id = await place_order(store)
    await store.mark_sent(order_id, NotificationKind.CONFIRMATION)
    await store.mark_sent(order_id, NotificationKind.DISPATCH)
    half_done = await place_order(store)
    await store.mark_sent(half_done, NotificationKind.CONFIRMATION)

    clock.advance(hours=1)
    scheduler = make_scheduler(store, connected, clock)
    assert await scheduler.rearm(store, timedelta(hours=2)) == 1

    assert await scheduler.run_due() == [NotificationOutcome.SENT]
    assert connected.messages_to(PHONE) == [DEFAULT_DISPATCH_MESSAGE]


async def test_rearm_overdue_but_marked_sends_nothing(store, connected, clock):
    order_id = await place_order(store)
    await store.mark_sent(order_id, NotificationKind.CONFIRMATION)
    await store.mark_sent(order_id, NotificationKind.DISPATCH)

    clock.advance(hours=1)
    scheduler = make_scheduler(store, connected, clock)
    await scheduler.rearm(store, timedelta(hours=2))
    # Even a stray task for a flagged kind is dropped at firing time.
    scheduler.schedule(NotificationTask(order_id, NotificationKind.DISPATCH, clock.now()))

    assert await scheduler.run_due() == [NotificationOutcome.SKIPPED]
    assert connected.sent == []


async def test_rearm_ignores_orders_outside_window(store, connected, clock):
    await place_order(store)
    clock.advance(hours=5)
    scheduler = make_scheduler(store, connected, clock)

    assert await scheduler.rearm(store, timedelta(hours=2)) == 0
    assert scheduler.pending == 0


async def test_background_loop_fires_when_due(store, connected):
    order_id = await place_order(store)
    dispatcher = NotificationDispatcher(store, connected, TEMPLATES, send_timeout=1.0)
    scheduler = NotificationScheduler(
        dispatcher,
        NotificationDelays(confirmation=timedelta(milliseconds=50), dispatch=timedelta(milliseconds=100)),
        SystemClock(),
    )
    scheduler.start()
    try:
        scheduler.schedule_order(order_id, SystemClock().now())
        for _ in range(100):
            if len(connected.sent) == 2:
                break
            await asyncio.sleep(0.02)
    finally:
        await scheduler.shutdown()

    assert connected.messages_to(PHONE) == [DEFAULT_CONFIRMATION_MESSAGE, DEFAULT_DISPATCH_MESSAGE]


async def test_two_dispatchers_default_policy_send_once(store, clock):
    """Overlapping processes race on the claim, not on a read of the flag."""
    channel = MockChannel(min_latency=0.05, max_latency=0.05, pairing_delay=0)
    await channel.start()
    order_id = await place_order(store)
    first = make_scheduler(store, channel, clock)
    second = make_scheduler(store, channel, clock)
    task = NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now())
    first.schedule(task)
    second.schedule(task)

    outcomes = await asyncio.gather(first.run_due(), second.run_due())

    assert sorted(outcomes[0] + outcomes[1]) == [NotificationOutcome.SENT, NotificationOutcome.SKIPPED]
    assert channel.messages_to(PHONE) == [DEFAULT_CONFIRMATION_MESSAGE]
    assert (await store.get_order(order_id)).confirmation_sent is True


async def test_missed_attempt_is_not_retried_elsewhere(store, channel, clock):
    order_id = await place_order(store)
    task = NotificationTask(order_id, NotificationKind.DISPATCH, clock.now())
    failing = make_scheduler(store, channel, clock)
    failing.schedule(task)
    assert await failing.run_due() == [NotificationOutcome.MISSED]

    await channel.start()
    other = make_scheduler(store, channel, clock)
    other.schedule(task)
    assert await other.run_due() == [NotificationOutcome.SKIPPED]
    assert await other.rearm(store, timedelta(hours=2)) == 1  # only the confirmation

    order = await store.get_order(order_id)
    assert order.dispatch_sent is False
    assert channel.messages_to(PHONE) == []


async def test_voided_order_is_skipped(store, connected, clock):
    order_id = await place_order(store)
    await store.void_order(order_id)

    for policy in NotificationPolicy:
        scheduler = make_scheduler(store, connected, clock, policy=policy)
        scheduler.schedule(NotificationTask(order_id, NotificationKind.CONFIRMATION, clock.now()))
        assert await scheduler.run_due() == [NotificationOutcome.SKIPPED]

    assert connected.sent == []
