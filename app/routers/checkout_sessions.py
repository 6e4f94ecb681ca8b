from typing import Optional
from fastapi import APIRouter, Depends, status
from app.core.db import SessionDep
from app.core.dependencies.auth import get_current_user, get_optional_user, CurrentUser
from app.models.checkout_session import (
    CheckoutSessionCreate, CheckoutSessionContactUpdate, CheckoutSessionCreated, CheckoutSessionRead
)
from app.services.checkout_session_service import CheckoutSessionService

router = APIRouter(prefix="/api/checkout-sessions", tags=["checkout"])


@router.post("", response_model=CheckoutSessionCreated, status_code=status.HTTP_201_CREATED, description="""
Crea una sesión de checkout para un visitante (con o sin cuenta).

El total se recalcula en el servidor; si no coincide con `total_price` se
responde 400. El token devuelto es la única forma de acceder a la sesión.
""")
def create_checkout_session(
    data: CheckoutSessionCreate,
    session: SessionDep,
    current_user: Optional[CurrentUser] = Depends(get_optional_user)
):
    checkout = CheckoutSessionService(session).create(
        service_id=data.service_id,
        total_price=data.total_price,
        add_on_ids=data.selected_add_ons,
        contact_data=data.contact_data,
        project_details=data.project_details,
        user_id=current_user.id if current_user else None
    )
    return CheckoutSessionCreated(session_token=checkout.token, expires_at=checkout.expires_at)


@router.get("/{token}", response_model=CheckoutSessionRead)
def get_checkout_session(token: str, session: SessionDep):
    """Devuelve la sesión; 410 si ya venció."""
    return CheckoutSessionRead.from_session(CheckoutSessionService(session).get(token))


@router.put("/{token}/contact", response_model=CheckoutSessionRead, description="""
Guarda los datos de contacto (y opcionalmente los detalles del proyecto).
""")
def attach_contact(token: str, data: CheckoutSessionContactUpdate, session: SessionDep):
    checkout = CheckoutSessionService(session).attach_contact(
        token, data.contact_data, data.project_details)
    return CheckoutSessionRead.from_session(checkout)


@router.post("/{token}/claim", response_model=CheckoutSessionRead, description="""
Asocia la sesión al usuario autenticado. Repetir la llamada con el mismo
usuario no tiene efecto; con otro usuario responde 409.
""")
def claim_checkout_session(
    token: str,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user)
):
    checkout = CheckoutSessionService(session).claim(token, current_user.id)
    return CheckoutSessionRead.from_session(checkout)
