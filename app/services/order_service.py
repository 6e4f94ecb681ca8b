import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence
from uuid import UUID
from pydantic import BaseModel, ValidationError
from sqlmodel import Session, select
from sqlalchemy import update
from app.core.config import settings
from app.core.exceptions import (
    DomainError, InvalidAmount, InvalidContactData, InvalidState, NotFound, Forbidden,
    TooManyAttempts
)
from app.models.contact import ContactData, ProjectDetails
from app.models.order import Order, OrderStatus, PaymentUrlResponse
from app.models.payment import Payment, PaymentStatus
from app.models.service import ServiceSnapshot, AddOnSnapshot
from app.models.user import User
from app.services.checkout_session_service import CheckoutSessionService
from app.services.payment_gateway import PaymentGateway, generate_reference
from app.services.project_service import provision_project
from app.services.referral_service import on_order_paid
from app.services.service_catalog_service import build_service_snapshot, assert_price_matches
from app.utils.audit import audit_log
from app.utils.money import encode_price, to_minor_units

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success", "succeeded"}
FAILED_STATUSES = {"failed", "reversed"}


class ConfirmationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_PAID = "already_paid"
    STALE = "stale"
    FAILED = "failed"
    UNKNOWN_REFERENCE = "unknown_reference"
    AMOUNT_MISMATCH = "amount_mismatch"
    # Solo en conciliación: la pasarela aún no tiene un resultado final
    UNRESOLVED = "unresolved"


class ConfirmationResult(BaseModel):
    outcome: ConfirmationOutcome
    order_id: Optional[UUID] = None
    order_status: Optional[OrderStatus] = None


class OrderService:
    """
    Ciclo de vida del pedido: pending -> paid | cancelled, con
    reactivaciones pending -> pending que emiten una nueva referencia.
    """

    def __init__(self, session: Session, gateway: Optional[PaymentGateway] = None):
        self.session = session
        self.gateway = gateway

    # -----------------------------------------------------------------
    # Creación
    # -----------------------------------------------------------------

    def _new_order(
        self,
        user_id: UUID,
        snapshot: ServiceSnapshot,
        add_ons: Sequence[AddOnSnapshot],
        total_price,
        contact_data: ContactData,
        project_details: Optional[ProjectDetails] = None
    ) -> Order:
        expected = assert_price_matches(snapshot, add_ons, total_price)
        if not (Decimal(settings.ORDER_MIN_AMOUNT) <= expected <= Decimal(settings.ORDER_MAX_AMOUNT)):
            raise InvalidAmount(
                f"Order amount must be between {settings.ORDER_MIN_AMOUNT} and {settings.ORDER_MAX_AMOUNT}")

        order = Order(
            user_id=user_id,
            service_id=snapshot.id,
            service_snapshot=snapshot.model_dump(mode="json"),
            contact_snapshot=contact_data.model_dump(mode="json"),
            project_details=project_details.model_dump(mode="json") if project_details else None,
            selected_add_ons=[a.model_dump(mode="json") for a in add_ons],
            total_price=encode_price(expected),
            currency=settings.CURRENCY,
            status=OrderStatus.PENDING
        )
        self.session.add(order)
        self.session.flush()
        return order

    def create_order(
        self,
        user_id: UUID,
        service_id: int,
        total_price,
        contact_data: ContactData,
        add_on_ids: Sequence[int] = (),
        project_details: Optional[ProjectDetails] = None
    ) -> Order:
        """Pedido a partir de un carrito directo; precios tomados del catálogo."""
        snapshot, add_ons = build_service_snapshot(self.session, service_id, add_on_ids)
        order = self._new_order(user_id, snapshot, add_ons, total_price, contact_data, project_details)
        self.session.commit()
        self.session.refresh(order)
        audit_log("order_created", user_id, order_id=order.id, total_price=order.total_price)
        return order

    def create_order_from_session(self, token: str, user_id: UUID) -> Order:
        """
        Consume la sesión de checkout y crea el pedido en la misma
        transacción: si algo falla, la sesión sigue disponible.
        """
        try:
            checkout = CheckoutSessionService(self.session).consume(token, user_id)
            try:
                contact = ContactData(**checkout.contact_data)
                details = ProjectDetails(**checkout.project_details) if checkout.project_details else None
            except ValidationError as e:
                raise InvalidContactData(str(e))
            order = self._new_order(
                user_id,
                ServiceSnapshot(**checkout.service_snapshot),
                [AddOnSnapshot(**a) for a in checkout.selected_add_ons or []],
                checkout.total_price,
                contact,
                details
            )
            checkout.order_id = order.id
            self.session.add(checkout)
            self.session.commit()
        except DomainError:
            self.session.rollback()
            raise
        self.session.refresh(order)
        audit_log("order_created", user_id, order_id=order.id,
                  total_price=order.total_price, checkout_session=checkout.id)
        return order

    # -----------------------------------------------------------------
    # Consultas
    # -----------------------------------------------------------------

    def get_order(self, order_id: UUID, user_id: UUID, is_admin: bool = False) -> Order:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        if order.user_id != user_id and not is_admin:
            raise Forbidden()
        return order

    def list_orders(self, user_id: UUID, is_admin: bool = False) -> List[Order]:
        query = select(Order)
        if not is_admin:
            query = query.where(Order.user_id == user_id)
        return self.session.exec(query.order_by(Order.created_at.desc())).all()

    # -----------------------------------------------------------------
    # Pagos
    # -----------------------------------------------------------------

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise RuntimeError("OrderService needs a payment gateway for this operation")
        return self.gateway

    def _start_payment(self, order: Order, action: str) -> PaymentUrlResponse:
        """
        Abre una transacción nueva en la pasarela y la guarda como referencia
        vigente. Si la pasarela falla el pedido no se modifica.
        """
        gateway = self._require_gateway()
        previous_reference = order.payment_reference
        reference = generate_reference()
        email = (order.contact_snapshot or {}).get("email")
        if not email:
            user = self.session.get(User, order.user_id)
            email = user.email if user else None

        transaction = gateway.initialize_transaction(
            reference=reference,
            email=email,
            amount_minor=to_minor_units(order.total_amount),
            currency=order.currency,
            metadata={"order_id": str(order.id), "user_id": str(order.user_id)}
        )

        now = datetime.utcnow()
        if previous_reference is None:
            same_reference = Order.payment_reference.is_(None)
        else:
            same_reference = Order.payment_reference == previous_reference
        result = self.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING, same_reference)
            .values(payment_reference=transaction.reference, payment_initialized_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            logger.warning("Order %s changed while initializing payment %s", order.id, reference)
            raise InvalidState("Order changed while the payment was being initialized")

        if previous_reference:
            self.session.execute(
                update(Payment)
                .where(Payment.reference == previous_reference,
                       Payment.status == PaymentStatus.INITIALIZED)
                .values(status=PaymentStatus.SUPERSEDED)
                .execution_options(synchronize_session=False)
            )
        self.session.add(Payment(
            reference=transaction.reference,
            order_id=order.id,
            user_id=order.user_id,
            amount=order.total_amount,
            currency=order.currency,
            authorization_url=transaction.authorization_url,
            created_at=now
        ))
        self.session.commit()
        self.session.refresh(order)

        audit_log(action, order.user_id, order_id=order.id,
                  reference=transaction.reference, previous_reference=previous_reference)
        return PaymentUrlResponse(
            payment_url=transaction.authorization_url,
            reference=transaction.reference
        )

    def initialize_payment(self, order_id: UUID, user_id: UUID, is_admin: bool = False) -> PaymentUrlResponse:
        order = self.get_order(order_id, user_id, is_admin)
        if order.status != OrderStatus.PENDING:
            raise InvalidState(f"Order is {order.status.value}")
        if order.payment_reference and order.payment_initialized_at:
            ttl = timedelta(minutes=settings.PAYMENT_REFERENCE_TTL_MINUTES)
            if datetime.utcnow() - order.payment_initialized_at < ttl:
                raise InvalidState("A payment is already in progress for this order")
        return self._start_payment(order, "payment_initialized")

    def reactivate_payment(self, order_id: UUID, user_id: UUID, is_admin: bool = False) -> PaymentUrlResponse:
        """Emite una referencia nueva para un pedido pendiente (con enfriamiento)."""
        order = self.get_order(order_id, user_id, is_admin)
        if order.status != OrderStatus.PENDING:
            raise InvalidState(f"Order is {order.status.value}")
        if order.payment_initialized_at:
            elapsed = (datetime.utcnow() - order.payment_initialized_at).total_seconds()
            cooldown = settings.PAYMENT_REACTIVATION_COOLDOWN_SECONDS
            if elapsed < cooldown:
                raise TooManyAttempts(max(1, math.ceil(cooldown - elapsed)))
        return self._start_payment(order, "payment_reactivated")

    def _stale(self, order: Order, reference: str, gateway_status: str) -> ConfirmationResult:
        audit_log("stale_payment_callback", order.user_id, level=logging.WARNING,
                  order_id=order.id, reference=reference,
                  order_status=order.status.value, gateway_status=gateway_status)
        return ConfirmationResult(
            outcome=ConfirmationOutcome.STALE, order_id=order.id, order_status=order.status)

    def confirm_payment(
        self,
        reference: str,
        gateway_status: str,
        amount_minor: Optional[int] = None
    ) -> ConfirmationResult:
        """
        Aplica el resultado de la pasarela a un pedido. Idempotente: repetir
        la misma confirmación no vuelve a provisionar ni a pagar comisión.

        Un pedido cancelado, o una referencia reemplazada, nunca pasa a pagado.
        """
        gateway_status = (gateway_status or "").lower()
        order = self.session.exec(
            select(Order).where(Order.payment_reference == reference)
        ).first()

        if not order:
            payment = self.session.exec(
                select(Payment).where(Payment.reference == reference)
            ).first()
            if not payment:
                logger.warning("Payment callback for unknown reference %s", reference)
                return ConfirmationResult(outcome=ConfirmationOutcome.UNKNOWN_REFERENCE)
            # Referencia antigua de un pedido que ya tiene otra vigente
            return self._stale(self.session.get(Order, payment.order_id), reference, gateway_status)

        if order.status == OrderStatus.PAID:
            return ConfirmationResult(
                outcome=ConfirmationOutcome.ALREADY_PAID, order_id=order.id, order_status=order.status)
        if order.status == OrderStatus.CANCELLED:
            return self._stale(order, reference, gateway_status)

        if gateway_status not in SUCCESS_STATUSES:
            self.session.execute(
                update(Payment)
                .where(Payment.reference == reference, Payment.status == PaymentStatus.INITIALIZED)
                .values(status=PaymentStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            audit_log("payment_failed", order.user_id, order_id=order.id,
                      reference=reference, gateway_status=gateway_status)
            return ConfirmationResult(
                outcome=ConfirmationOutcome.FAILED, order_id=order.id, order_status=order.status)

        expected_minor = to_minor_units(order.total_amount)
        if amount_minor is not None and int(amount_minor) != expected_minor:
            logger.critical(
                "Amount mismatch for order %s reference %s: expected %s got %s",
                order.id, reference, expected_minor, amount_minor)
            audit_log("payment_amount_mismatch", order.user_id, level=logging.CRITICAL,
                      order_id=order.id, reference=reference,
                      expected=expected_minor, received=amount_minor)
            return ConfirmationResult(
                outcome=ConfirmationOutcome.AMOUNT_MISMATCH, order_id=order.id, order_status=order.status)

        now = datetime.utcnow()
        try:
            result = self.session.execute(
                update(Order)
                .where(
                    Order.id == order.id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_reference == reference
                )
                .values(status=OrderStatus.PAID, paid_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Otra entrega del mismo evento, o una cancelación, ganó la carrera
                self.session.rollback()
                self.session.refresh(order)
                if order.status == OrderStatus.PAID:
                    return ConfirmationResult(
                        outcome=ConfirmationOutcome.ALREADY_PAID, order_id=order.id,
                        order_status=order.status)
                return self._stale(order, reference, gateway_status)

            self.session.refresh(order)
            provision_project(self.session, order)
            on_order_paid(self.session, order)
            self.session.execute(
                update(Payment)
                .where(Payment.reference == reference)
                .values(status=PaymentStatus.SUCCEEDED, paid_at=now)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Failed to confirm payment %s for order %s", reference, order.id)
            raise

        audit_log("payment_confirmed", order.user_id, order_id=order.id,
                  reference=reference, amount=order.total_price)
        return ConfirmationResult(
            outcome=ConfirmationOutcome.CONFIRMED, order_id=order.id, order_status=OrderStatus.PAID)

    def reconcile_payment(self, order_id: UUID) -> ConfirmationResult:
        """Consulta la pasarela por la referencia vigente y aplica el resultado."""
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        if not order.payment_reference:
            raise InvalidState("Order has no payment reference to reconcile")

        verification = self._require_gateway().verify_transaction(order.payment_reference)
        status = verification.status.lower()
        if status not in SUCCESS_STATUSES and status not in FAILED_STATUSES:
            logger.info("Payment %s still %s at gateway", order.payment_reference, status)
            return ConfirmationResult(
                outcome=ConfirmationOutcome.UNRESOLVED, order_id=order.id, order_status=order.status)
        return self.confirm_payment(order.payment_reference, status, verification.amount_minor)

    # -----------------------------------------------------------------
    # Cancelación
    # -----------------------------------------------------------------

    def cancel_order(self, order_id: UUID, by_user_id: UUID, is_admin: bool = False) -> Order:
        order = self.get_order(order_id, by_user_id, is_admin)
        if order.status != OrderStatus.PENDING:
            raise InvalidState(f"Only pending orders can be cancelled (order is {order.status.value})")

        result = self.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING)
            .values(status=OrderStatus.CANCELLED, cancelled_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise InvalidState("Order is no longer pending")
        self.session.commit()
        self.session.refresh(order)

        audit_log("order_cancelled", by_user_id, order_id=order.id, by_admin=is_admin)
        return order
