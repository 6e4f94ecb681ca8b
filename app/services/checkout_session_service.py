import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID
from sqlalchemy import update, delete, or_
from sqlmodel import Session, select
from app.core.config import settings
from app.core.exceptions import NotFound, Expired, AlreadyCompleted, Conflict, InvalidState
from app.models.checkout_session import CheckoutSession
from app.models.contact import ContactData, ProjectDetails
from app.services.service_catalog_service import build_service_snapshot, assert_price_matches
from app.utils.audit import audit_log
from app.utils.money import encode_price

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "checkout_"


def generate_session_token() -> str:
    return f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"


class CheckoutSessionService:
    """
    Guarda el carrito de un visitante que aún no tiene cuenta, hasta que se
    autentica y el carrito se convierte en un pedido.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        service_id: int,
        total_price: Decimal,
        add_on_ids: Sequence[int] = (),
        contact_data: Optional[ContactData] = None,
        project_details: Optional[ProjectDetails] = None,
        user_id: Optional[UUID] = None
    ) -> CheckoutSession:
        snapshot, add_ons = build_service_snapshot(self.session, service_id, add_on_ids)
        expected = assert_price_matches(snapshot, add_ons, total_price)

        now = datetime.utcnow()
        checkout = CheckoutSession(
            token=generate_session_token(),
            service_id=snapshot.id,
            service_snapshot=snapshot.model_dump(mode="json"),
            selected_add_ons=[a.model_dump(mode="json") for a in add_ons],
            contact_data=contact_data.model_dump(mode="json") if contact_data else None,
            project_details=project_details.model_dump(mode="json") if project_details else None,
            total_price=encode_price(expected),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES)
        )
        self.session.add(checkout)
        self.session.commit()
        self.session.refresh(checkout)
        audit_log("checkout_session_created", user_id,
                  service_id=snapshot.id, total_price=checkout.total_price)
        return checkout

    def _get(self, token: str) -> CheckoutSession:
        checkout = self.session.exec(
            select(CheckoutSession).where(CheckoutSession.token == token)
        ).first()
        if not checkout:
            raise NotFound("Checkout session not found")
        return checkout

    def _get_open(self, token: str, now: datetime) -> CheckoutSession:
        checkout = self._get(token)
        if checkout.is_completed:
            raise AlreadyCompleted()
        if checkout.is_expired(now):
            raise Expired()
        return checkout

    def get(self, token: str) -> CheckoutSession:
        checkout = self._get(token)
        if not checkout.is_completed and checkout.is_expired():
            raise Expired()
        return checkout

    def attach_contact(
        self,
        token: str,
        contact_data: ContactData,
        project_details: Optional[ProjectDetails] = None
    ) -> CheckoutSession:
        checkout = self._get_open(token, datetime.utcnow())
        checkout.contact_data = contact_data.model_dump(mode="json")
        if project_details is not None:
            checkout.project_details = project_details.model_dump(mode="json")
        self.session.add(checkout)
        self.session.commit()
        self.session.refresh(checkout)
        return checkout

    def claim(self, token: str, user_id: UUID) -> CheckoutSession:
        """Asocia la sesión al usuario recién autenticado. Idempotente."""
        checkout = self._get_open(token, datetime.utcnow())
        if checkout.user_id == user_id:
            return checkout
        if checkout.user_id is not None:
            raise Conflict("Checkout session already claimed by another user")

        result = self.session.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.id == checkout.id,
                CheckoutSession.user_id.is_(None)
            )
            .values(user_id=user_id)
        )
        self.session.commit()
        self.session.refresh(checkout)
        if result.rowcount != 1 and checkout.user_id != user_id:
            raise Conflict("Checkout session already claimed by another user")
        audit_log("checkout_session_claimed", user_id, session_id=checkout.id)
        return checkout

    def consume(self, token: str, user_id: UUID) -> CheckoutSession:
        """
        Marca la sesión como completada con un único UPDATE condicional, de
        modo que dos peticiones simultáneas no puedan crear dos pedidos.

        No hace commit: quien llama crea el pedido en la misma transacción.
        """
        now = datetime.utcnow()
        checkout = self._get_open(token, now)
        if checkout.user_id is not None and checkout.user_id != user_id:
            raise Conflict("Checkout session already claimed by another user")
        if not checkout.contact_data:
            raise InvalidState("Contact data must be submitted before creating the order")

        result = self.session.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.id == checkout.id,
                CheckoutSession.is_completed == False,
                CheckoutSession.expires_at > now,
                or_(CheckoutSession.user_id.is_(None), CheckoutSession.user_id == user_id)
            )
            .values(is_completed=True, completed_at=now, user_id=user_id)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(checkout)
        if result.rowcount != 1:
            # Perdimos la carrera: averiguar por qué
            if checkout.is_completed:
                raise AlreadyCompleted()
            if checkout.is_expired(now):
                raise Expired()
            raise Conflict("Checkout session already claimed by another user")
        return checkout

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Elimina las sesiones vencidas (abandonadas o ya consumidas)."""
        result = self.session.execute(
            delete(CheckoutSession)
            .where(CheckoutSession.expires_at <= (now or datetime.utcnow()))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount:
            logger.info("Purged %s expired checkout sessions", result.rowcount)
        return result.rowcount
