from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from enum import Enum
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4
from app.utils.money import MinorUnits

if TYPE_CHECKING:
    from .order import Order


class PaymentStatus(str, Enum):
    INITIALIZED = "initialized"
    SUPERSEDED = "superseded"  # Reemplazada por una reactivación
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Payment(SQLModel, table=True):
    """Una fila por transacción abierta en la pasarela."""
    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    reference: str = Field(unique=True, index=True)
    order_id: UUID = Field(foreign_key="order.id", index=True)
    user_id: UUID = Field(foreign_key="user.id")
    amount: Decimal = Field(sa_type=MinorUnits, nullable=False)
    currency: str = Field(default="NGN", max_length=3)
    provider: str = Field(default="paystack")
    authorization_url: Optional[str] = None
    status: PaymentStatus = Field(default=PaymentStatus.INITIALIZED)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    paid_at: Optional[datetime] = None

    order: Optional["Order"] = Relationship(back_populates="payments")
