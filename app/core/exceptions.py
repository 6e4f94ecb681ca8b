"""
Errores de dominio del ciclo de pedidos, pagos y referidos.

Todos son HTTPException para que los servicios los lancen directamente y
FastAPI los convierta en la respuesta adecuada.
"""
from typing import Any, Optional
from fastapi import HTTPException, status


class DomainError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request could not be processed"

    def __init__(self, detail: Any = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail if detail is not None else self.default_detail,
            headers=headers
        )


# Errores de entrada del cliente
class PriceMismatch(DomainError):
    default_detail = "Total price does not match the selected service and add-ons"


class InvalidAmount(DomainError):
    default_detail = "Invalid order amount"


class InvalidService(DomainError):
    default_detail = "Service is not available"


class InvalidContactData(DomainError):
    default_detail = "Invalid contact data"


class BelowMinimum(DomainError):
    default_detail = "Amount is below the minimum withdrawal"


class InsufficientBalance(DomainError):
    default_detail = "Insufficient balance"


# Conflictos de estado
class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class Expired(DomainError):
    status_code = status.HTTP_410_GONE
    default_detail = "Checkout session expired"


class InvalidState(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Operation not allowed in the current state"


class AlreadyCompleted(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Checkout session already completed"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource belongs to another user"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed to operate on this resource"


class TooManyAttempts(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            detail={
                "message": f"Please wait {retry_after_seconds} seconds before trying again",
                "retry_after_seconds": retry_after_seconds
            },
            headers={"Retry-After": str(retry_after_seconds)}
        )


# Errores externos (pasarela de pago)
class PaymentGatewayUnavailable(DomainError):
    """Timeout o 5xx de la pasarela; el cliente puede reintentar."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Payment provider is temporarily unavailable, please retry"


class PaymentGatewayError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment provider rejected the request"


# Violaciones de integridad
class WebhookSignatureInvalid(DomainError):
    default_detail = "Invalid signature"


class LedgerIntegrityError(DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Referral ledger integrity violation"
