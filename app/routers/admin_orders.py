from uuid import UUID
from fastapi import APIRouter, Depends

from app.core.dependencies.admin_auth import get_current_admin
from app.core.db import SessionDep
from app.services.checkout_session_service import CheckoutSessionService
from app.services.order_service import OrderService, ConfirmationResult
from app.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/api/admin", tags=["ADMIN"])


@router.post("/orders/{order_id}/reconcile", response_model=ConfirmationResult, description="""
Consulta en Paystack la referencia vigente del pedido y aplica el resultado,
por si el webhook no llegó.
""")
def reconcile_order(
    order_id: UUID,
    session: SessionDep,
    current_admin=Depends(get_current_admin),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    return OrderService(session, gateway).reconcile_payment(order_id)


@router.post("/checkout-sessions/purge")
def purge_checkout_sessions(session: SessionDep, current_admin=Depends(get_current_admin)):
    """Elimina las sesiones de checkout vencidas."""
    return {"deleted": CheckoutSessionService(session).purge_expired()}
