"""
Order Service

The two operations the web form drives, as plain async calls:

    identify_customer(raw_phone)  → is this a returning customer?
    submit_order(payload)         → persist, send the receipt, schedule follow-ups

Both are refused while the chat channel is not ready, before anything is
written. The HTTP layer in orderbot.main only translates these calls and
their errors.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol, Union
from datetime import datetime
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from orderbot.core.clock import Clock, SystemClock
from orderbot.core.config import Settings
from orderbot.core.exceptions import (
    InvalidOrderError,
    InvalidPhoneError,
    PersistenceError,
    ReceiptDeliveryError,
    UnregisteredContactError,
)
from orderbot.gate import ChannelReadinessGate
from orderbot.models import Customer, Order
from orderbot.phone import format_phone, normalize_phone
from orderbot.receipt import ReceiptCustomer, compute_totals, render_receipt
from orderbot.schemas import OrderSubmission
from orderbot.services.channel.base import BaseChannel
from orderbot.store import OrderStore

logger = logging.getLogger(__name__)


class NotificationQueue(Protocol):
    """Anything that can hold an order's follow-ups until they are due."""

    def schedule_order(self, order_id: int, created_at: datetime) -> Any:
        ...


@dataclass
class IdentifyResult:
    phone: str
    is_new: bool
    customer: Optional[Customer] = None


@dataclass
class SubmitResult:
    order_id: int
    total: Decimal


class OrderService:
    """Order intake on top of the gate, the store and the channel."""

    def __init__(
        self,
        gate: ChannelReadinessGate,
        store: OrderStore,
        channel: BaseChannel,
        notifications: NotificationQueue,
        settings: Settings,
        clock: Optional[Clock] = None,
    ):
        self.gate = gate
        self.store = store
        self.channel = channel
        self.notifications = notifications
        self.settings = settings
        self.clock = clock or SystemClock()
        self.timezone = ZoneInfo(settings.business_timezone)

    @staticmethod
    def _canonical(raw_phone: object) -> str:
        phone = normalize_phone(raw_phone)
        if phone is None:
            raise InvalidPhoneError()
        return phone

    async def identify_customer(self, raw_phone: object) -> IdentifyResult:
        self.gate.ensure_ready()
        phone = self._canonical(raw_phone)

        if not await self.channel.is_registered(phone):
            raise UnregisteredContactError()

        customer = await self.store.get_customer(phone)
        if customer is not None:
            logger.info(f"Customer found: {customer.name}")
            return IdentifyResult(phone=phone, is_new=False, customer=customer)

        logger.info(f"New customer. Phone validated: {phone}")
        return IdentifyResult(phone=phone, is_new=True)

    async def submit_order(self, payload: Union[OrderSubmission, dict]) -> SubmitResult:
        """
        Take an order.

        Raises:
            ChannelUnavailableError: channel not ready; nothing was stored.
            InvalidOrderError: bad phone, empty cart or missing payment.
            PersistenceError: the order could not be stored.
            ReceiptDeliveryError: the receipt could not be sent; the stored
                order is voided and never gets follow-ups, even after a
                restart.
        """
        self.gate.ensure_ready()
        submitted_at = self.clock.now()

        if not isinstance(payload, OrderSubmission):
            try:
                payload = OrderSubmission.model_validate(payload)
            except ValidationError as e:
                raise InvalidOrderError(detail=str(e)) from e
        phone = self._canonical(payload.customer.phone)

        customer = payload.customer
        snapshot = payload.snapshot()
        await self.store.upsert_customer(phone, customer.name, customer.address, customer.reference)
        order_id = await self.store.create_order(phone, snapshot)

        receipt = render_receipt(
            snapshot,
            ReceiptCustomer(
                name=customer.name,
                phone=format_phone(phone),
                address=customer.address,
                reference=customer.reference,
            ),
            submitted_at.astimezone(self.timezone),
            delivery_fee=self.settings.delivery_fee,
            business_name=self.settings.business_name,
        )
        result = await self.channel.send_with_timeout(
            phone, receipt, self.settings.send_timeout_seconds
        )
        if not result.success:
            logger.error(f"❌ Failed to send receipt of order #{order_id} to {phone}: {result.error_message}")
            try:
                await self.store.void_order(order_id)
            except PersistenceError:
                logger.error(f"Order #{order_id} could not be voided; follow-ups may still be re-armed")
            raise ReceiptDeliveryError(detail=result.error_message)
        logger.info(f"✅ Receipt of order #{order_id} sent to {phone}")

        self.notifications.schedule_order(order_id, submitted_at)

        totals = compute_totals(
            snapshot.cart, self.settings.delivery_fee, snapshot.payment_method, snapshot.change_for
        )
        return SubmitResult(order_id=order_id, total=totals.total)

    async def order_history(self, raw_phone: object) -> list[Order]:
        return await self.store.history(self._canonical(raw_phone))
