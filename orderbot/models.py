"""
SQLAlchemy Database Models

Customers are keyed by canonical phone. Orders keep an immutable snapshot
of the cart and payment, plus one sent flag per follow-up notification.
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, Numeric, ForeignKey
from sqlalchemy.sql import func

from orderbot.database import Base
from orderbot.schemas import CartItem, OrderSnapshot, PaymentMethod


class NotificationKind(str, enum.Enum):
    """Deferred follow-up messages sent after the receipt."""
    CONFIRMATION = "confirmation"
    DISPATCH = "dispatch"


class Customer(Base):
    """One row per canonical phone; resubmissions overwrite the details."""
    __tablename__ = "customers"

    phone = Column(String(20), primary_key=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=False)
    reference = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Customer {self.phone} - {self.name}>"


class Order(Base):
    """
    Orders table.

    Only the sent, claim and voided flags change after creation, and each
    only from false to true (see OrderStore.claim and OrderStore.mark_sent).
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    customer_phone = Column(
        String(20),
        ForeignKey("customers.phone"),
        nullable=False,
        index=True
    )

    # =========================================================================
    # SNAPSHOT
    # =========================================================================
    cart = Column(JSON, nullable=False)
    payment_method = Column(String(20), nullable=False)
    change_for = Column(Numeric(10, 2), nullable=True)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================
    confirmation_sent = Column(Boolean, default=False, nullable=False)
    dispatch_sent = Column(Boolean, default=False, nullable=False)

    # Set by the one worker allowed to attempt the send; stays set if it fails
    confirmation_claimed = Column(Boolean, default=False, nullable=False)
    dispatch_claimed = Column(Boolean, default=False, nullable=False)

    # Receipt could not be delivered; the customer was told the order failed
    voided = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def is_sent(self, kind: NotificationKind) -> bool:
        return bool(getattr(self, SENT_FLAGS[kind]))

    def is_claimed(self, kind: NotificationKind) -> bool:
        return bool(getattr(self, CLAIM_FLAGS[kind]))

    def is_pending(self, kind: NotificationKind) -> bool:
        """True while a follow-up of `kind` may still be attempted."""
        return not (self.voided or self.is_sent(kind) or self.is_claimed(kind))

    @property
    def snapshot(self) -> OrderSnapshot:
        return OrderSnapshot(
            cart=[CartItem.model_validate(item) for item in self.cart],
            payment_method=PaymentMethod(self.payment_method),
            change_for=self.change_for,
        )

    def __repr__(self):
        return f"<Order #{self.id} - {self.customer_phone}>"


# Column holding the sent flag of each notification kind
SENT_FLAGS = {
    NotificationKind.CONFIRMATION: "confirmation_sent",
    NotificationKind.DISPATCH: "dispatch_sent",
}

# Column holding the send claim of each notification kind
CLAIM_FLAGS = {
    NotificationKind.CONFIRMATION: "confirmation_claimed",
    NotificationKind.DISPATCH: "dispatch_claimed",
}
