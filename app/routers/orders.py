import logging
from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status
from app.core.db import SessionDep
from app.core.dependencies.auth import get_current_user, CurrentUser
from app.core.exceptions import PaymentGatewayUnavailable, PaymentGatewayError
from app.models.order import OrderCreate, OrderRead, OrderCreateResponse, PaymentUrlResponse
from app.services.order_service import OrderService
from app.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED, description="""
Crea un pedido en estado `pending`.

Acepta dos formas:
- `session_token`: consume una sesión de checkout (una sola vez).
- `service_id` + `selected_add_ons` + `total_price` + `contact_data`: carrito directo.

Si `initialize_payment` es true (por defecto) también abre la transacción en
Paystack y devuelve `payment_url`. Si la pasarela falla, el pedido queda
creado y `payment_error` explica el motivo; se puede reintentar con
`/initialize-payment`.
""")
def create_order(
    data: OrderCreate,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    service = OrderService(session, gateway)
    if data.session_token:
        order = service.create_order_from_session(data.session_token, current_user.id)
    else:
        order = service.create_order(
            user_id=current_user.id,
            service_id=data.service_id,
            total_price=data.total_price,
            contact_data=data.contact_data,
            add_on_ids=data.selected_add_ons,
            project_details=data.project_details
        )

    payment_url = None
    payment_error = None
    if data.initialize_payment:
        try:
            payment_url = service.initialize_payment(order.id, current_user.id).payment_url
        except (PaymentGatewayUnavailable, PaymentGatewayError) as e:
            payment_error = e.detail
        session.refresh(order)

    return OrderCreateResponse(
        order=OrderRead.from_order(order),
        payment_url=payment_url,
        payment_error=payment_error
    )


@router.get("", response_model=List[OrderRead])
def list_orders(session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    """Pedidos del usuario autenticado (todos si es administrador)."""
    orders = OrderService(session).list_orders(current_user.id, current_user.is_admin)
    return [OrderRead.from_order(order) for order in orders]


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: UUID, session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    order = OrderService(session).get_order(order_id, current_user.id, current_user.is_admin)
    return OrderRead.from_order(order)


@router.post("/{order_id}/initialize-payment", response_model=PaymentUrlResponse, description="""
Abre una transacción de pago para un pedido pendiente que aún no tiene una
referencia vigente.
""")
def initialize_payment(
    order_id: UUID,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    return OrderService(session, gateway).initialize_payment(
        order_id, current_user.id, current_user.is_admin)


@router.post("/{order_id}/reactivate-payment", response_model=PaymentUrlResponse, description="""
Genera una nueva referencia de pago para un pedido pendiente. La referencia
anterior queda reemplazada y cualquier confirmación tardía se ignora.

Responde 429 con `retry_after_seconds` si el último intento fue hace menos
de 30 segundos.
""")
def reactivate_payment(
    order_id: UUID,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    return OrderService(session, gateway).reactivate_payment(
        order_id, current_user.id, current_user.is_admin)


def _cancel(order_id: UUID, session, current_user: CurrentUser) -> OrderRead:
    try:
        order = OrderService(session).cancel_order(order_id, current_user.id, current_user.is_admin)
        return OrderRead.from_order(order)
    except HTTPException:
        raise
    except Exception:
        logging.exception("Unexpected error cancelling order %s", order_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(order_id: UUID, session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    """Cancela un pedido pendiente (dueño o administrador)."""
    return _cancel(order_id, session, current_user)


@router.delete("/{order_id}", response_model=OrderRead)
def delete_order(order_id: UUID, session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    """Equivalente a /cancel; los pedidos no se borran físicamente."""
    return _cancel(order_id, session, current_user)
