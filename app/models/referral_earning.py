from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import CheckConstraint
from typing import Optional, TYPE_CHECKING
from decimal import Decimal
from datetime import datetime
from uuid import UUID, uuid4
from app.utils.money import MinorUnits

if TYPE_CHECKING:
    from .user import User

ZERO = Decimal("0.00")


class ReferralEarning(SQLModel, table=True):
    """
    Libro de saldo de un referidor. Solo lo modifican el motor de comisiones
    y el flujo de retiros.

    available_balance = total_earned - total_withdrawn - pending_earnings
    """
    __tablename__ = "referral_earning"
    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_referral_earning_available_non_negative"),
        CheckConstraint("pending_earnings >= 0", name="ck_referral_earning_pending_non_negative"),
    )

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    user_id: UUID = Field(foreign_key="user.id", unique=True)
    total_earned: Decimal = Field(default=ZERO, sa_type=MinorUnits, nullable=False)
    total_withdrawn: Decimal = Field(default=ZERO, sa_type=MinorUnits, nullable=False)
    pending_earnings: Decimal = Field(default=ZERO, sa_type=MinorUnits, nullable=False)
    available_balance: Decimal = Field(default=ZERO, sa_type=MinorUnits, nullable=False)
    total_referrals: int = Field(default=0)
    successful_referrals: int = Field(default=0)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )

    user: Optional["User"] = Relationship(back_populates="referral_earning")

    def is_consistent(self) -> bool:
        expected = self.total_earned - self.total_withdrawn - self.pending_earnings
        return self.available_balance == expected and self.available_balance >= ZERO


class ReferralEarningRead(SQLModel):
    total_earned: Decimal = ZERO
    total_withdrawn: Decimal = ZERO
    pending_earnings: Decimal = ZERO
    available_balance: Decimal = ZERO
    total_referrals: int = 0
    successful_referrals: int = 0
