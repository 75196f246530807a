"""
Receipt Rendering

Pure functions that turn an order snapshot into the text sent over the chat
channel. Nothing here reads the clock or touches I/O; callers pass "now".

Money uses Decimal and is rounded to cents with ROUND_HALF_UP.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from orderbot.models import NotificationKind
from orderbot.schemas import CartItem, OrderSnapshot, PaymentMethod

CENTS = Decimal("0.01")
RULE = "=" * 50
THIN_RULE = "-" * 50


@dataclass(frozen=True)
class ReceiptTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    change_due: Optional[Decimal] = None


@dataclass(frozen=True)
class ReceiptCustomer:
    name: str
    phone: str
    address: str
    reference: Optional[str] = None


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_brl(value: Decimal) -> str:
    """R$ 1234,50 style, as printed on the receipt."""
    return f"R$ {to_cents(value):.2f}".replace(".", ",")


def compute_totals(
    cart: Iterable[CartItem],
    delivery_fee: Decimal,
    payment_method: PaymentMethod,
    change_for: Optional[Decimal] = None,
) -> ReceiptTotals:
    """
    Subtotal, fee, total and (cash only) change owed.

    change_due is negative when the customer's note is smaller than the
    total; it is reported as-is.
    """
    subtotal = to_cents(sum((item.line_total for item in cart), Decimal("0")))
    fee = to_cents(delivery_fee)
    total = subtotal + fee

    change_due = None
    if payment_method == PaymentMethod.CASH and change_for is not None:
        change_due = to_cents(change_for) - total

    return ReceiptTotals(subtotal=subtotal, delivery_fee=fee, total=total, change_due=change_due)


def render_receipt(
    snapshot: OrderSnapshot,
    customer: ReceiptCustomer,
    now: datetime,
    *,
    delivery_fee: Decimal,
    business_name: str,
) -> str:
    """Build the multi-line receipt text."""
    totals = compute_totals(
        snapshot.cart, delivery_fee, snapshot.payment_method, snapshot.change_for
    )

    lines = [
        RULE,
        f"      {business_name} - Pedido em {now:%d/%m/%Y} às {now:%H:%M}",
        RULE,
        "👤 *DADOS DO CLIENTE*",
        f"Nome: {customer.name}",
        f"Telefone: {customer.phone}",
        "",
        "*ITENS:*",
    ]

    for item in snapshot.cart:
        lines.append(f"• {item.quantity}x {item.name:<25} {format_brl(item.line_total)}")
        if item.note:
            lines.append(f"  Obs: {item.note}")

    lines += [
        THIN_RULE,
        f"Subtotal:         {format_brl(totals.subtotal)}",
        f"Taxa de Entrega:  {format_brl(totals.delivery_fee)}",
        f"*TOTAL:* *{format_brl(totals.total)}*",
        THIN_RULE,
        "*ENDEREÇO:*",
        customer.address,
    ]
    if customer.reference:
        lines.append(f"Ref: {customer.reference}")

    lines += [
        THIN_RULE,
        "*FORMA DE PAGAMENTO:*",
        snapshot.payment_method.value,
    ]
    if totals.change_due is not None:
        lines.append(f"Troco para: {format_brl(snapshot.change_for)}")
        lines.append(f"Troco: {format_brl(totals.change_due)}")

    lines += [
        RULE,
        "               OBRIGADO PELA PREFERENCIA!",
    ]
    return "\n".join(lines)


def render_notification(kind: NotificationKind, templates: Mapping[str, str]) -> str:
    """Text of a deferred follow-up message."""
    return templates[kind.value]
