from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional, List
from datetime import datetime
from uuid import UUID, uuid4
from decimal import Decimal
from pydantic import BaseModel
from .contact import ContactData, ProjectDetails
from .service import ServiceSnapshot, AddOnSnapshot


class CheckoutSession(SQLModel, table=True):
    __tablename__ = "checkout_session"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    token: str = Field(unique=True, index=True, max_length=128)
    service_id: int = Field(foreign_key="service.id")
    # Copias, no referencias vivas: un cambio de precio no altera la sesión
    service_snapshot: dict = Field(sa_column=Column(JSON, nullable=False))
    selected_add_ons: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    contact_data: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    project_details: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    total_price: str  # Decimal codificado como texto
    user_id: Optional[UUID] = Field(default=None, foreign_key="user.id")
    order_id: Optional[UUID] = Field(default=None, foreign_key="order.id")
    is_completed: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    expires_at: datetime = Field(nullable=False, index=True)
    completed_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at


class CheckoutSessionCreate(BaseModel):
    service_id: int
    selected_add_ons: List[int] = []
    total_price: Decimal
    contact_data: Optional[ContactData] = None
    project_details: Optional[ProjectDetails] = None


class CheckoutSessionContactUpdate(BaseModel):
    contact_data: ContactData
    project_details: Optional[ProjectDetails] = None


class CheckoutSessionCreated(BaseModel):
    session_token: str
    expires_at: datetime


class CheckoutSessionRead(BaseModel):
    session_token: str
    service_snapshot: ServiceSnapshot
    selected_add_ons: List[AddOnSnapshot]
    contact_data: Optional[ContactData] = None
    project_details: Optional[ProjectDetails] = None
    total_price: Decimal
    user_id: Optional[UUID] = None
    is_completed: bool
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_session(cls, checkout: CheckoutSession) -> "CheckoutSessionRead":
        return cls(
            session_token=checkout.token,
            service_snapshot=checkout.service_snapshot,
            selected_add_ons=checkout.selected_add_ons,
            contact_data=checkout.contact_data,
            project_details=checkout.project_details,
            total_price=Decimal(checkout.total_price),
            user_id=checkout.user_id,
            is_completed=checkout.is_completed,
            created_at=checkout.created_at,
            expires_at=checkout.expires_at
        )
