"""
Error taxonomy shared by the order service and the HTTP layer.

Every error carries the HTTP status code and the customer-facing message
(pt-BR, shown by the web form) that the API should return for it.
"""

from typing import Optional


class OrderBotError(Exception):
    """Base class for all application errors."""

    status_code = 500
    default_message = "Ocorreu um erro inesperado no servidor."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class InvalidOrderError(OrderBotError):
    """Malformed phone, empty cart or missing payment method."""

    status_code = 400
    default_message = "Dados do pedido inválidos."


class InvalidPhoneError(InvalidOrderError):
    default_message = "Formato de número de telefone inválido."


class UnregisteredContactError(InvalidOrderError):
    """The number has no account on the chat channel."""

    default_message = "Este número não possui uma conta de WhatsApp ativa."


class ChannelUnavailableError(OrderBotError):
    """The chat channel is not ready; the client may simply retry."""

    status_code = 503
    default_message = "Servidor de WhatsApp iniciando. Tente em instantes."


class PersistenceError(OrderBotError):
    """The relational store failed; nothing is considered created."""

    default_message = "Erro interno no servidor."


class ReceiptDeliveryError(OrderBotError):
    """The immediate receipt could not be delivered."""

    default_message = "Falha ao processar o pedido."


class ChannelError(OrderBotError):
    """The channel client could not start or lost its credentials."""

    status_code = 503
