"""
Pydantic Schemas for Request/Response Validation

Field names follow the Python side; aliases keep the JSON contract the web
form already speaks (Portuguese keys such as "carrinho" and "telefone").
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================

class PaymentMethod(str, Enum):
    """Payment methods offered by the form (values are the wire strings)."""
    CASH = "Dinheiro"
    CARD = "Cartão"
    PIX = "Pix"


# =============================================================================
# ORDER SNAPSHOT
# =============================================================================

class CartItem(BaseModel):
    """Single line of the cart."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100, alias="nome")
    price: Decimal = Field(..., ge=0, alias="preco")
    quantity: int = Field(..., ge=0, le=99, alias="quantidade")
    note: Optional[str] = Field(None, max_length=200, alias="observacao")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


def _parse_amount(v: Any) -> Any:
    """Accept "50", "50,00" or 50.0 for money typed into the form."""
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, str):
        v = v.strip().replace("R$", "").strip()
        if not v:
            return None
        v = v.replace(",", ".")
    try:
        return Decimal(str(v))
    except InvalidOperation:
        raise ValueError("Valor de troco inválido")


class OrderSnapshot(BaseModel):
    """What was ordered and how it will be paid; frozen once persisted."""
    model_config = ConfigDict(populate_by_name=True)

    cart: List[CartItem] = Field(..., min_length=1, alias="carrinho")
    payment_method: PaymentMethod = Field(..., alias="pagamento")
    change_for: Optional[Decimal] = Field(None, ge=0, alias="troco")

    @field_validator("change_for", mode="before")
    @classmethod
    def parse_change_for(cls, v: Any) -> Any:
        return _parse_amount(v)

    def cart_json(self) -> list[dict]:
        """Cart as stored in the orders table (prices kept as strings)."""
        return [item.model_dump(mode="json", by_alias=False) for item in self.cart]


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CustomerIn(BaseModel):
    """Customer block of an order submission."""
    model_config = ConfigDict(populate_by_name=True)

    phone: str = Field(..., min_length=8, max_length=30, alias="telefoneFormatado")
    name: str = Field(..., min_length=1, max_length=255, alias="nome")
    address: str = Field(..., min_length=1, alias="endereco")
    reference: Optional[str] = Field(None, alias="referencia")

    @field_validator("name", "address")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Campo obrigatório")
        return v

    @field_validator("reference")
    @classmethod
    def blank_reference(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class OrderSubmission(OrderSnapshot):
    """Request body of POST /api/criar-pedido."""
    customer: CustomerIn = Field(..., alias="cliente")

    def snapshot(self) -> OrderSnapshot:
        return OrderSnapshot(
            cart=self.cart,
            payment_method=self.payment_method,
            change_for=self.change_for,
        )


class IdentifyRequest(BaseModel):
    """Request body of POST /api/identificar-cliente."""
    model_config = ConfigDict(populate_by_name=True)

    phone: str = Field(..., alias="telefone")


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class CustomerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    phone: str = Field(..., alias="telefone")
    name: Optional[str] = Field(None, alias="nome")
    address: Optional[str] = Field(None, alias="endereco")
    reference: Optional[str] = Field(None, alias="referencia")


class IdentifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    is_new: bool = Field(..., alias="isNew")
    customer: CustomerResponse = Field(..., alias="cliente")


class OrderCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_id: int = Field(..., alias="pedidoId")
    total: Decimal


class OrderResponse(BaseModel):
    """One entry of a customer's order history."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    phone: str = Field(..., alias="telefone")
    cart: List[CartItem] = Field(..., alias="carrinho")
    payment_method: PaymentMethod = Field(..., alias="pagamento")
    change_for: Optional[Decimal] = Field(None, alias="troco")
    subtotal: Decimal
    total: Decimal
    confirmation_sent: bool = Field(..., alias="confirmacaoEnviada")
    dispatch_sent: bool = Field(..., alias="entregaEnviada")
    voided: bool = Field(False, alias="anulado")
    created_at: datetime = Field(..., alias="criadoEm")


class OrderHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    orders: List[OrderResponse] = Field(..., alias="pedidos")


class ChannelStatusResponse(BaseModel):
    state: str
    ready: bool
    provider: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    channel: str
    redis: str
    pending_notifications: int
    timestamp: datetime
