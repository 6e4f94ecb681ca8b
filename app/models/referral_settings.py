from sqlmodel import SQLModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import field_validator

DEFAULT_SETTINGS_ID = "default"


class ReferralSettingsBase(SQLModel):
    commission_percentage: Decimal = Field(
        default=Decimal("10.00"), max_digits=5, decimal_places=2)  # Porcentaje (10.00 = 10 %)
    minimum_withdrawal: Decimal = Field(
        default=Decimal("50.00"), max_digits=12, decimal_places=2)
    payout_schedule: str = Field(default="monthly")
    is_active: bool = Field(default=True)


class ReferralSettings(ReferralSettingsBase, table=True):
    __tablename__ = "referral_settings"
    id: str = Field(default=DEFAULT_SETTINGS_ID, primary_key=True)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )


class ReferralSettingsUpdate(SQLModel):
    commission_percentage: Optional[Decimal] = None
    minimum_withdrawal: Optional[Decimal] = None
    payout_schedule: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("commission_percentage")
    @classmethod
    def validate_percentage(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and not (Decimal("0") <= value <= Decimal("100")):
            raise ValueError("Commission percentage must be between 0-100")
        return value

    @field_validator("minimum_withdrawal")
    @classmethod
    def validate_minimum(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and value < 0:
            raise ValueError("Minimum withdrawal must be positive")
        return value
