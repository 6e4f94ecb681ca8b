import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlmodel import Session, select
from sqlalchemy import update
from app.core.exceptions import (
    InvalidAmount, BelowMinimum, InsufficientBalance, NotFound, InvalidState, LedgerIntegrityError
)
from app.models.referral_earning import ReferralEarning
from app.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from app.services.referral_service import load_referral_settings, apply_ledger_update
from app.utils.audit import audit_log
from app.utils.encryption import payment_details_cipher
from app.utils.money import quantize_money, to_decimal

logger = logging.getLogger(__name__)

# Transiciones válidas por estado actual
ALLOWED_TRANSITIONS = {
    WithdrawalStatus.PENDING: {
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.COMPLETED,
        WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.APPROVED: {WithdrawalStatus.COMPLETED},
}


class WithdrawalService:
    def __init__(self, session: Session):
        self.session = session

    def request_withdrawal(
        self,
        user_id: UUID,
        amount: Decimal,
        payment_details: Dict[str, Any],
        payment_method: str = "manual"
    ) -> WithdrawalRequest:
        """
        Reserva el monto del saldo disponible y crea la solicitud.

        La reserva es un único UPDATE condicional (available_balance >= amount),
        así dos solicitudes simultáneas nunca dejan el saldo en negativo.

        Raises:
            InvalidAmount: monto no positivo
            BelowMinimum: monto menor al mínimo configurado
            InsufficientBalance: saldo disponible insuficiente
        """
        amount = quantize_money(to_decimal(amount))
        if amount <= 0:
            raise InvalidAmount("Invalid withdrawal amount")

        minimum = quantize_money(to_decimal(load_referral_settings(self.session).minimum_withdrawal))
        if amount < minimum:
            raise BelowMinimum(f"Minimum withdrawal amount is {minimum}")

        reserved = apply_ledger_update(
            self.session, user_id,
            ReferralEarning.available_balance >= amount,
            available_balance=ReferralEarning.available_balance - amount,
            pending_earnings=ReferralEarning.pending_earnings + amount
        )
        if not reserved:
            self.session.rollback()
            audit_log("withdrawal_rejected_insufficient_balance", user_id, amount=amount)
            raise InsufficientBalance()

        withdrawal = WithdrawalRequest(
            user_id=user_id,
            amount=amount,
            payment_method=payment_method,
            payment_details=payment_details_cipher.encrypt_details(payment_details),
            status=WithdrawalStatus.PENDING
        )
        self.session.add(withdrawal)
        self.session.commit()
        self.session.refresh(withdrawal)

        audit_log("withdrawal_requested", user_id, withdrawal_id=withdrawal.id, amount=amount)
        return withdrawal

    def process_withdrawal(
        self,
        withdrawal_id: UUID,
        decision: WithdrawalStatus,
        admin_id: UUID,
        admin_notes: Optional[str] = None
    ) -> WithdrawalRequest:
        """
        Aplica la decisión del administrador:
        1. pending -> approved/completed: la reserva pasa a total_withdrawn
        2. pending -> rejected: la reserva vuelve a available_balance
        3. approved -> completed: solo cambia el estado
        """
        withdrawal = self.session.get(WithdrawalRequest, withdrawal_id)
        if not withdrawal:
            raise NotFound("Withdrawal request not found")

        current = withdrawal.status
        if decision not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidState(f"Cannot change withdrawal from {current.value} to {decision.value}")

        now = datetime.utcnow()
        result = self.session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status == current)
            .values(
                status=decision,
                admin_notes=admin_notes,
                processed_at=now,
                processed_by=admin_id
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise InvalidState("Withdrawal request was already processed")

        amount = withdrawal.amount
        if current == WithdrawalStatus.PENDING:
            if decision == WithdrawalStatus.REJECTED:
                values = dict(
                    pending_earnings=ReferralEarning.pending_earnings - amount,
                    available_balance=ReferralEarning.available_balance + amount
                )
            else:
                values = dict(
                    pending_earnings=ReferralEarning.pending_earnings - amount,
                    total_withdrawn=ReferralEarning.total_withdrawn + amount
                )
            moved = apply_ledger_update(
                self.session, withdrawal.user_id,
                ReferralEarning.pending_earnings >= amount,
                **values
            )
            if not moved:
                self.session.rollback()
                logger.critical(
                    "Reservation for withdrawal %s not found in ledger of user %s",
                    withdrawal_id, withdrawal.user_id)
                raise LedgerIntegrityError()

        self.session.commit()
        self.session.refresh(withdrawal)

        audit_log("withdrawal_processed", admin_id,
                  withdrawal_id=withdrawal.id, user=withdrawal.user_id,
                  previous=current.value, status=decision.value, amount=amount)
        return withdrawal

    def list_user_withdrawals(self, user_id: UUID) -> List[WithdrawalRequest]:
        return self.session.exec(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.user_id == user_id)
            .order_by(WithdrawalRequest.created_at.desc())
        ).all()

    def list_withdrawals(
        self,
        status: Optional[WithdrawalStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[WithdrawalRequest]:
        query = select(WithdrawalRequest)
        if status:
            query = query.where(WithdrawalRequest.status == status)
        return self.session.exec(
            query.order_by(WithdrawalRequest.created_at.desc()).offset(skip).limit(limit)
        ).all()
