"""
Order Store

Customer and order persistence on top of SQLAlchemy async sessions.

claim() and mark_sent() are the synchronization points of the notification
flow: each flips one flag with a single conditional UPDATE and reports
whether this call performed the transition, so two timers (or two
processes) racing on the same order and kind can never both see True.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update, or_
from sqlalchemy.exc import SQLAlchemyError

from orderbot.core.clock import Clock, SystemClock
from orderbot.core.exceptions import PersistenceError
from orderbot.database import Database
from orderbot.models import Customer, Order, NotificationKind, CLAIM_FLAGS, SENT_FLAGS
from orderbot.schemas import OrderSnapshot

logger = logging.getLogger(__name__)


def _insert_for(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(detail=f"Unsupported database dialect: {dialect_name}")
    return insert


class OrderStore:
    """Row-level operations on customers and orders."""

    def __init__(self, database: Database, clock: Optional[Clock] = None):
        self.database = database
        self.clock = clock or SystemClock()
        self._insert = _insert_for(database.dialect_name)

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    async def upsert_customer(
        self,
        phone: str,
        name: str,
        address: str,
        reference: Optional[str] = None,
    ) -> Customer:
        """Insert the customer or overwrite name/address/reference."""
        now = self.clock.now()
        stmt = self._insert(Customer).values(
            phone=phone,
            name=name,
            address=address,
            reference=reference,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Customer.phone],
            set_={
                "name": stmt.excluded.name,
                "address": stmt.excluded.address,
                "reference": stmt.excluded.reference,
                "updated_at": now,
            },
        )
        try:
            async with self.database.session() as session:
                await session.execute(stmt)
                await session.commit()
                customer = await session.get(Customer, phone, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save customer {phone}: {e}")
            raise PersistenceError(detail=str(e)) from e

        logger.info(f"Customer {phone} saved ({name})")
        return customer

    async def get_customer(self, phone: str) -> Optional[Customer]:
        try:
            async with self.database.session() as session:
                return await session.get(Customer, phone)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load customer {phone}: {e}")
            raise PersistenceError(detail=str(e)) from e

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, phone: str, snapshot: OrderSnapshot) -> int:
        """Persist a new order and return its id."""
        order = Order(
            customer_phone=phone,
            cart=snapshot.cart_json(),
            payment_method=snapshot.payment_method.value,
            change_for=snapshot.change_for,
            confirmation_sent=False,
            dispatch_sent=False,
            created_at=self.clock.now(),
        )
        try:
            async with self.database.session() as session:
                session.add(order)
                await session.commit()
                await session.refresh(order)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create order for {phone}: {e}")
            raise PersistenceError(detail=str(e)) from e

        logger.info(f"Order #{order.id} created for {phone}")
        return order.id

    async def get_order(self, order_id: int) -> Optional[Order]:
        try:
            async with self.database.session() as session:
                return await session.get(Order, order_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load order #{order_id}: {e}")
            raise PersistenceError(detail=str(e)) from e

    async def history(self, phone: str) -> list[Order]:
        """All orders of a customer, newest first."""
        query = (
            select(Order)
            .where(Order.customer_phone == phone)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load history for {phone}: {e}")
            raise PersistenceError(detail=str(e)) from e

    async def open_orders(self, since: datetime) -> list[Order]:
        """Orders created at/after `since` with a follow-up still unattempted."""
        unattempted = [
            and_(getattr(Order, SENT_FLAGS[kind]).is_(False), getattr(Order, CLAIM_FLAGS[kind]).is_(False))
            for kind in NotificationKind
        ]
        query = (
            select(Order)
            .where(
                Order.created_at >= since,
                Order.voided.is_(False),
                or_(*unattempted),
            )
            .order_by(Order.id)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load open orders: {e}")
            raise PersistenceError(detail=str(e)) from e

    # =========================================================================
    # FLAGS
    # =========================================================================

    async def _flip(self, order_id: int, flag, *conditions) -> bool:
        """Conditional UPDATE of one flag from false to true; True if this call did it."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.voided.is_(False), flag.is_(False), *conditions)
            .values({flag: True})
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update {flag.key} of order #{order_id}: {e}")
            raise PersistenceError(detail=str(e)) from e
        return result.rowcount == 1

    async def mark_sent(self, order_id: int, kind: NotificationKind) -> bool:
        """
        Set the sent flag of `kind` only if it is still false.

        Returns:
            True if this call flipped the flag, False if it was already set
            (or the order does not exist or was voided).

        Raises:
            PersistenceError: the store could not be reached. Callers must
                not read this as "already sent".
        """
        newly_marked = await self._flip(order_id, getattr(Order, SENT_FLAGS[kind]))
        logger.debug(f"mark_sent(#{order_id}, {kind.value}) -> {newly_marked}")
        return newly_marked

    async def claim(self, order_id: int, kind: NotificationKind) -> bool:
        """
        Reserve the single send attempt of `kind`.

        Succeeds for exactly one caller across processes, and only while the
        notification is neither sent nor claimed. The claim is never
        released: a failed attempt is a missed notification.
        """
        claimed = await self._flip(
            order_id,
            getattr(Order, CLAIM_FLAGS[kind]),
            getattr(Order, SENT_FLAGS[kind]).is_(False),
        )
        logger.debug(f"claim(#{order_id}, {kind.value}) -> {claimed}")
        return claimed

    async def void_order(self, order_id: int) -> bool:
        """Mark an order as not accepted; no follow-up is sent for it afterwards."""
        voided = await self._flip(order_id, Order.voided)
        if voided:
            logger.info(f"Order #{order_id} voided")
        return voided
