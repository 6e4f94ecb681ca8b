import json
import logging
from typing import Optional
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlmodel import select
from app.core.config import settings
from app.core.db import SessionDep
from app.core.exceptions import DomainError, WebhookSignatureInvalid
from app.models.order import Order, OrderStatus
from app.services.order_service import OrderService
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.utils.audit import audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# Eventos de Paystack que cambian el estado de un pago
EVENT_STATUS = {
    "charge.success": "success",
    "charge.failed": "failed",
}


@router.post("/webhook", description="""
Webhook de Paystack. Requiere la cabecera `x-paystack-signature`
(HMAC-SHA512 del cuerpo con la clave secreta).

Responde 200 a todo evento aceptado, incluso si ya estaba procesado o es
obsoleto, para que Paystack no lo reintente.
""")
async def paystack_webhook(
    request: Request,
    session: SessionDep,
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    raw_body = await request.body()
    signature = request.headers.get("x-paystack-signature")
    client_ip = request.client.host if request.client else "unknown"

    if not gateway.verify_webhook_signature(raw_body, signature):
        logger.critical("Rejected Paystack webhook from %s: %s", client_ip,
                        "missing signature" if not signature else "invalid signature")
        audit_log("webhook_invalid_signature", level=logging.CRITICAL,
                  client_ip=client_ip, has_signature=bool(signature))
        raise WebhookSignatureInvalid("Missing signature" if not signature else "Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise DomainError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise DomainError("Invalid webhook payload")

    event = payload.get("event")
    data = payload.get("data")
    if not isinstance(event, str) or event not in EVENT_STATUS:
        logger.info("Ignoring Paystack event %s", event)
        return {"status": "ignored", "event": event}

    reference = data.get("reference") if isinstance(data, dict) else None
    if not reference or not isinstance(reference, str):
        logger.warning("Paystack event %s without reference", event)
        return {"status": "ignored", "event": event}

    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        raise DomainError("Invalid webhook amount")

    result = OrderService(session, gateway).confirm_payment(
        reference, EVENT_STATUS[event], amount)
    return {"status": "success", "outcome": result.outcome.value}


@router.get("/callback")
def payment_callback(
    session: SessionDep,
    reference: Optional[str] = None,
    trxref: Optional[str] = None
):
    """
    Destino de la redirección de Paystack. Solo lee el estado del pedido;
    la confirmación llega por el webhook.
    """
    payment_reference = reference or trxref
    outcome = "failed"
    if payment_reference:
        order = session.exec(
            select(Order).where(Order.payment_reference == payment_reference)
        ).first()
        if order and order.status == OrderStatus.PAID:
            outcome = "success"
        elif order and order.status == OrderStatus.PENDING:
            outcome = "processing"

    query = {"payment": outcome}
    if payment_reference:
        query["reference"] = payment_reference
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}/?{urlencode(query)}#dashboard",
        status_code=302
    )
