# app/models/referral.py
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional, List
from enum import Enum
from decimal import Decimal
from uuid import UUID, uuid4
from datetime import datetime
from app.utils.money import MinorUnits
from .referral_earning import ReferralEarningRead


class ReferralStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"


class Referral(SQLModel, table=True):
    """Comisión generada por un pedido pagado de un usuario referido."""
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_referral_order"),
        UniqueConstraint("referrer_id", "order_id", name="uq_referral_referrer_order"),
    )

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    referrer_id: UUID = Field(foreign_key="user.id", index=True)   # quién refirió (padre)
    referred_user_id: UUID = Field(foreign_key="user.id")          # usuario referido (hijo)
    order_id: UUID = Field(foreign_key="order.id")
    commission_amount: Decimal = Field(sa_type=MinorUnits, nullable=False)
    commission_percentage: Decimal = Field(max_digits=5, decimal_places=2)
    status: ReferralStatus = Field(default=ReferralStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    paid_at: Optional[datetime] = None


class ReferralRead(SQLModel):
    id: UUID
    referred_user_id: UUID
    order_id: UUID
    commission_amount: Decimal
    commission_percentage: Decimal
    status: ReferralStatus
    created_at: datetime


class ReferralCodeResponse(SQLModel):
    referral_code: str
    referral_link: str


class ReferralRegisterRequest(SQLModel):
    referral_code: str


class ReferralSettingsPublic(SQLModel):
    commission_percentage: Decimal
    minimum_withdrawal: Decimal
    payout_schedule: str
    is_active: bool
    base_url: str


class ReferralDashboard(SQLModel):
    referral_code: Optional[str] = None
    referral_link: Optional[str] = None
    earnings: ReferralEarningRead
    referrals: List[ReferralRead]
    settings: ReferralSettingsPublic
