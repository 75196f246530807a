from datetime import datetime
from decimal import Decimal

from orderbot.models import NotificationKind
from orderbot.receipt import (
    ReceiptCustomer,
    compute_totals,
    format_brl,
    render_notification,
    render_receipt,
)
from orderbot.schemas import CartItem, OrderSnapshot, PaymentMethod

FEE = Decimal("5.00")
CART = [
    CartItem(name="X-Burger", price=Decimal("10.00"), quantity=2),
    CartItem(name="Batata Frita", price=Decimal("5.50"), quantity=1, note="sem sal"),
]
CUSTOMER = ReceiptCustomer(
    name="Test",
    phone="+55 (11) 9123-4567",
    address="Rua das Flores, 123",
    reference="Portão azul",
)
NOW = datetime(2024, 5, 10, 18, 5)


def test_totals():
    totals = compute_totals(CART, FEE, PaymentMethod.PIX)

    assert totals.subtotal == Decimal("25.50")
    assert totals.delivery_fee == Decimal("5.00")
    assert totals.total == Decimal("30.50")
    assert totals.change_due is None


def test_cash_change():
    totals = compute_totals(CART, FEE, PaymentMethod.CASH, Decimal("50.00"))
    assert totals.change_due == Decimal("19.50")


def test_insufficient_cash_gives_negative_change():
    totals = compute_totals(CART, FEE, PaymentMethod.CASH, Decimal("20.00"))
    assert totals.change_due == Decimal("-10.50")


def test_change_ignored_for_non_cash():
    totals = compute_totals(CART, FEE, PaymentMethod.CARD, Decimal("50.00"))
    assert totals.change_due is None


def test_rounding_is_half_up():
    cart = [CartItem(name="Refri", price=Decimal("0.125"), quantity=1)]
    totals = compute_totals(cart, Decimal("0"), PaymentMethod.PIX)
    assert totals.subtotal == Decimal("0.13")


def test_format_brl():
    assert format_brl(Decimal("30.5")) == "R$ 30,50"
    assert format_brl(Decimal("-10.5")) == "R$ -10,50"


def test_render_receipt():
    snapshot = OrderSnapshot(cart=CART, payment_method=PaymentMethod.PIX)

    text = render_receipt(snapshot, CUSTOMER, NOW, delivery_fee=FEE, business_name="Doka Burger")

    assert "Doka Burger - Pedido em 10/05/2024 às 18:05" in text
    assert "Nome: Test" in text
    assert "• 2x X-Burger" in text
    assert "R$ 20,00" in text
    assert "  Obs: sem sal" in text
    assert "Subtotal:         R$ 25,50" in text
    assert "Taxa de Entrega:  R$ 5,00" in text
    assert "*TOTAL:* *R$ 30,50*" in text
    assert "Ref: Portão azul" in text
    assert "Pix" in text
    assert "Troco" not in text


def test_render_receipt_is_deterministic():
    snapshot = OrderSnapshot(cart=CART, payment_method=PaymentMethod.PIX)
    first = render_receipt(snapshot, CUSTOMER, NOW, delivery_fee=FEE, business_name="Doka")
    second = render_receipt(snapshot, CUSTOMER, NOW, delivery_fee=FEE, business_name="Doka")
    assert first == second


def test_render_receipt_with_change():
    snapshot = OrderSnapshot(cart=CART, payment_method=PaymentMethod.CASH, change_for=Decimal("50"))

    text = render_receipt(snapshot, CUSTOMER, NOW, delivery_fee=FEE, business_name="Doka")

    assert "Troco para: R$ 50,00" in text
    assert "Troco: R$ 19,50" in text


def test_render_receipt_with_insufficient_change():
    snapshot = OrderSnapshot(cart=CART, payment_method=PaymentMethod.CASH, change_for=Decimal("20"))

    text = render_receipt(snapshot, CUSTOMER, NOW, delivery_fee=FEE, business_name="Doka")

    assert "Troco: R$ -10,50" in text


def test_render_receipt_without_reference():
    customer = ReceiptCustomer(name="Ana", phone="+55 (11) 9123-4567", address="Rua A, 1")
    snapshot = OrderSnapshot(cart=CART, payment_method=PaymentMethod.CARD)

    text = render_receipt(snapshot, customer, NOW, delivery_fee=FEE, business_name="Doka")

    assert "Ref:" not in text


def test_render_notification():
    templates = {"confirmation": "preparando", "dispatch": "a caminho"}
    assert render_notification(NotificationKind.CONFIRMATION, templates) == "preparando"
    assert render_notification(NotificationKind.DISPATCH, templates) == "a caminho"
