from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from typing import Optional, List, TYPE_CHECKING
from enum import Enum
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4
from pydantic import BaseModel, model_validator
from .contact import ContactData, ProjectDetails
from .service import ServiceSnapshot, AddOnSnapshot

if TYPE_CHECKING:
    from .user import User
    from .payment import Payment


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Order(SQLModel, table=True):
    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    service_id: int = Field(foreign_key="service.id")
    service_snapshot: dict = Field(sa_column=Column(JSON, nullable=False))
    contact_snapshot: dict = Field(sa_column=Column(JSON, nullable=False))
    project_details: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    selected_add_ons: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    total_price: str  # Texto para evitar errores de coma flotante
    currency: str = Field(default="NGN", max_length=3)
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    payment_reference: Optional[str] = Field(default=None, unique=True, index=True)
    # Último intento de pago: caducidad de la referencia y enfriamiento de reactivación
    payment_initialized_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Relaciones
    user: Optional["User"] = Relationship(back_populates="orders")
    payments: List["Payment"] = Relationship(back_populates="order")

    @property
    def total_amount(self) -> Decimal:
        return Decimal(self.total_price)


class OrderCreate(BaseModel):
    """
    Acepta un carrito directo (usuario autenticado) o el token de una
    sesión de checkout a consumir.
    """
    session_token: Optional[str] = None
    service_id: Optional[int] = None
    selected_add_ons: List[int] = []
    total_price: Optional[Decimal] = None
    contact_data: Optional[ContactData] = None
    project_details: Optional[ProjectDetails] = None
    initialize_payment: bool = True

    @model_validator(mode="after")
    def check_cart_or_session(self):
        if self.session_token:
            return self
        if self.service_id is None or self.total_price is None or self.contact_data is None:
            raise ValueError(
                "Either session_token or service_id, total_price and contact_data are required")
        return self


class OrderRead(BaseModel):
    id: UUID
    user_id: UUID
    service_id: int
    service_snapshot: ServiceSnapshot
    contact_snapshot: ContactData
    project_details: Optional[ProjectDetails] = None
    selected_add_ons: List[AddOnSnapshot]
    total_price: Decimal
    currency: str
    status: OrderStatus
    payment_reference: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderRead":
        return cls(
            id=order.id,
            user_id=order.user_id,
            service_id=order.service_id,
            service_snapshot=order.service_snapshot,
            contact_snapshot=order.contact_snapshot,
            project_details=order.project_details,
            selected_add_ons=order.selected_add_ons,
            total_price=order.total_amount,
            currency=order.currency,
            status=order.status,
            payment_reference=order.payment_reference,
            created_at=order.created_at,
            paid_at=order.paid_at,
            cancelled_at=order.cancelled_at
        )


class OrderCreateResponse(BaseModel):
    order: OrderRead
    payment_url: Optional[str] = None
    # Si la pasarela falló, el pedido queda pendiente y se puede reintentar
    payment_error: Optional[str] = None


class PaymentUrlResponse(BaseModel):
    payment_url: str
    reference: str
