from sqlmodel import SQLModel, Field
from typing import Optional, Any, Dict
from enum import Enum
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4
from pydantic import field_validator
from app.utils.encryption import payment_details_cipher
from app.utils.money import MinorUnits


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"


class WithdrawalRequest(SQLModel, table=True):
    __tablename__ = "withdrawal_request"

    id: Optional[UUID] = Field(
        default_factory=uuid4, primary_key=True, unique=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    amount: Decimal = Field(sa_type=MinorUnits, nullable=False)
    payment_method: str = Field(default="manual")
    payment_details: str  # JSON encriptado
    status: WithdrawalStatus = Field(default=WithdrawalStatus.PENDING)
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[UUID] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)

    def get_decrypted_payment_details(self) -> Dict[str, Any]:
        return payment_details_cipher.decrypt_details(self.payment_details)


class WithdrawalCreate(SQLModel):
    amount: Decimal = Field(gt=0)
    payment_method: str = Field(default="manual", max_length=50)
    payment_details: Dict[str, Any]

    @field_validator("payment_details")
    @classmethod
    def validate_payment_details(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("payment_details is required")
        return value


class WithdrawalRead(SQLModel):
    """Retiro con los datos de pago enmascarados"""
    id: UUID
    user_id: UUID
    amount: Decimal
    payment_method: str
    payment_details: Dict[str, str]
    status: WithdrawalStatus
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[UUID] = None
    created_at: datetime

    @classmethod
    def from_withdrawal(cls, withdrawal: WithdrawalRequest) -> "WithdrawalRead":
        masked = payment_details_cipher.masked_details(withdrawal.payment_details)
        return cls(
            id=withdrawal.id,
            user_id=withdrawal.user_id,
            amount=withdrawal.amount,
            payment_method=withdrawal.payment_method,
            payment_details=masked,
            status=withdrawal.status,
            admin_notes=withdrawal.admin_notes,
            processed_at=withdrawal.processed_at,
            processed_by=withdrawal.processed_by,
            created_at=withdrawal.created_at
        )


class WithdrawalProcessRequest(SQLModel):
    status: WithdrawalStatus
    admin_notes: Optional[str] = Field(default=None, max_length=2000)
