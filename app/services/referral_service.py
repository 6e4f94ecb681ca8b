import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID
from sqlmodel import Session, select
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from app.core.config import settings
from app.core.exceptions import DomainError, NotFound, Conflict, LedgerIntegrityError
from app.models.order import Order
from app.models.referral import (
    Referral, ReferralStatus, ReferralRead, ReferralCodeResponse,
    ReferralDashboard, ReferralSettingsPublic
)
from app.models.referral_earning import ReferralEarning, ReferralEarningRead
from app.models.referral_settings import ReferralSettings, DEFAULT_SETTINGS_ID
from app.models.user import User
from app.utils.audit import audit_log
from app.utils.hashids_utils import encode_referral_code, decode_referral_code
from app.utils.money import percentage_of, quantize_money

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10


def load_referral_settings(session: Session) -> ReferralSettings:
    """Configuración vigente sin escribir nada (valores por defecto si no existe)."""
    return session.get(ReferralSettings, DEFAULT_SETTINGS_ID) or ReferralSettings()


# ---------------------------------------------------------------------------
# Libro de saldos
# ---------------------------------------------------------------------------

def ensure_earning_row(session: Session, user_id: UUID) -> ReferralEarning:
    earning = session.exec(
        select(ReferralEarning).where(ReferralEarning.user_id == user_id)
    ).first()
    if earning:
        return earning
    try:
        with session.begin_nested():
            earning = ReferralEarning(user_id=user_id)
            session.add(earning)
    except IntegrityError:
        earning = session.exec(
            select(ReferralEarning).where(ReferralEarning.user_id == user_id)
        ).first()
    return earning


def apply_ledger_update(session: Session, user_id: UUID, *conditions, **values) -> bool:
    """
    Aplica un UPDATE atómico sobre el saldo del usuario. Devuelve False si
    las condiciones no se cumplieron (ninguna fila afectada).
    """
    result = session.execute(
        update(ReferralEarning)
        .where(ReferralEarning.user_id == user_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    # Refrescar la copia en memoria y verificar el invariante
    earning = session.exec(
        select(ReferralEarning)
        .where(ReferralEarning.user_id == user_id)
        .execution_options(populate_existing=True)
    ).one()
    if not earning.is_consistent():
        logger.critical(
            "Ledger invariant violated for user %s: earned=%s withdrawn=%s pending=%s available=%s",
            user_id, earning.total_earned, earning.total_withdrawn,
            earning.pending_earnings, earning.available_balance)
        raise LedgerIntegrityError()
    return True


def get_earnings(session: Session, user_id: UUID) -> ReferralEarningRead:
    earning = session.exec(
        select(ReferralEarning).where(ReferralEarning.user_id == user_id)
    ).first()
    if not earning:
        return ReferralEarningRead()
    return ReferralEarningRead.model_validate(earning, from_attributes=True)


# ---------------------------------------------------------------------------
# Comisiones
# ---------------------------------------------------------------------------

def _find_referral(session: Session, order_id: UUID) -> Optional[Referral]:
    return session.exec(select(Referral).where(Referral.order_id == order_id)).first()


def on_order_paid(session: Session, order: Order) -> Optional[Referral]:
    """
    Acredita la comisión al referidor del comprador. Se llama dentro de la
    transacción que marca el pedido como pagado y no hace commit.

    Como mucho una comisión por pedido: la fila Referral tiene unique en
    order_id, de modo que una segunda confirmación (o una carrera) no
    vuelve a acreditar.
    """
    payer = session.get(User, order.user_id)
    if not payer or not payer.referred_by_id or payer.referred_by_id == payer.id:
        return None

    referral_settings = load_referral_settings(session)
    if not referral_settings.is_active:
        logger.info("Referral program inactive; no commission for order %s", order.id)
        return None

    if _find_referral(session, order.id):
        logger.info("Commission for order %s already recorded", order.id)
        return None

    referrer_id = payer.referred_by_id
    percentage = quantize_money(Decimal(str(referral_settings.commission_percentage)))
    commission = percentage_of(order.total_amount, percentage)

    ensure_earning_row(session, referrer_id)
    referral = Referral(
        referrer_id=referrer_id,
        referred_user_id=payer.id,
        order_id=order.id,
        commission_amount=commission,
        commission_percentage=percentage,
        status=ReferralStatus.CONFIRMED
    )
    try:
        with session.begin_nested():
            session.add(referral)
            session.flush()
            credited = apply_ledger_update(
                session, referrer_id,
                total_earned=ReferralEarning.total_earned + commission,
                available_balance=ReferralEarning.available_balance + commission,
                successful_referrals=ReferralEarning.successful_referrals + 1
            )
            if not credited:
                raise LedgerIntegrityError("Referral earning row missing")
    except IntegrityError:
        logger.warning("Commission for order %s recorded concurrently; skipping", order.id)
        return None

    audit_log("referral_commission_credited", referrer_id,
              order_id=order.id, referred_user_id=payer.id,
              commission=commission, percentage=percentage)
    return referral


# ---------------------------------------------------------------------------
# Códigos y registro
# ---------------------------------------------------------------------------

def build_referral_link(code: str) -> str:
    return f"{settings.REFERRAL_BASE_URL}{code}"


def generate_referral_code(session: Session, user_id: UUID) -> ReferralCodeResponse:
    """Devuelve el código del usuario; lo crea la primera vez."""
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if user.referral_code:
        return ReferralCodeResponse(
            referral_code=user.referral_code,
            referral_link=build_referral_link(user.referral_code))

    for attempt in range(MAX_CODE_ATTEMPTS):
        code = encode_referral_code(user_id, attempt)
        taken = session.exec(select(User.id).where(User.referral_code == code)).first()
        if taken:
            continue
        try:
            with session.begin_nested():
                user.referral_code = code
                session.add(user)
            session.commit()
        except IntegrityError:
            session.refresh(user)
            if user.referral_code:
                break
            continue
        audit_log("referral_code_generated", user_id, code=code)
        break
    else:
        raise Conflict("Could not allocate a unique referral code")

    session.refresh(user)
    return ReferralCodeResponse(
        referral_code=user.referral_code,
        referral_link=build_referral_link(user.referral_code))


def register_referral(session: Session, user_id: UUID, code: str) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    try:
        decode_referral_code(code)
    except ValueError:
        raise NotFound("Referral code not found")

    referrer = session.exec(
        select(User).where(User.referral_code == code.strip().upper())
    ).first()
    if not referrer:
        raise NotFound("Referral code not found")
    if referrer.id == user.id:
        raise DomainError("You cannot use your own referral code")
    if referrer.referred_by_id == user.id:
        raise DomainError("Circular referrals are not allowed")

    if user.referred_by_id is not None:
        if user.referred_by_id == referrer.id:
            return user
        raise Conflict("User already has a referrer")

    result = session.execute(
        update(User)
        .where(User.id == user.id, User.referred_by_id.is_(None))
        .values(referred_by_id=referrer.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise Conflict("User already has a referrer")

    ensure_earning_row(session, referrer.id)
    apply_ledger_update(
        session, referrer.id,
        total_referrals=ReferralEarning.total_referrals + 1
    )
    session.commit()
    session.refresh(user)
    audit_log("referral_registered", user.id, referrer_id=referrer.id)
    return user


def get_referral_dashboard(session: Session, user_id: UUID) -> ReferralDashboard:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    referrals = session.exec(
        select(Referral)
        .where(Referral.referrer_id == user_id)
        .order_by(Referral.created_at.desc())
    ).all()
    referral_settings = load_referral_settings(session)

    return ReferralDashboard(
        referral_code=user.referral_code,
        referral_link=build_referral_link(user.referral_code) if user.referral_code else None,
        earnings=get_earnings(session, user_id),
        referrals=[ReferralRead.model_validate(r, from_attributes=True) for r in referrals],
        settings=ReferralSettingsPublic(
            commission_percentage=referral_settings.commission_percentage,
            minimum_withdrawal=referral_settings.minimum_withdrawal,
            payout_schedule=referral_settings.payout_schedule,
            is_active=referral_settings.is_active,
            base_url=settings.REFERRAL_BASE_URL
        )
    )
