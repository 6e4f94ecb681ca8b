from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel
from app.utils.money import MinorUnits


class Service(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: str = Field(default="")
    price: Decimal = Field(sa_type=MinorUnits, nullable=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)

    add_ons: List["ServiceAddOn"] = Relationship(back_populates="service")


class ServiceAddOn(SQLModel, table=True):
    __tablename__ = "service_add_on"

    id: Optional[int] = Field(default=None, primary_key=True)
    service_id: int = Field(foreign_key="service.id")
    name: str
    price: Decimal = Field(sa_type=MinorUnits, nullable=False)
    is_active: bool = Field(default=True)

    service: Optional[Service] = Relationship(back_populates="add_ons")


# Copias inmutables que se guardan en sesiones de checkout y pedidos
class ServiceSnapshot(BaseModel):
    id: int
    name: str
    price: Decimal


class AddOnSnapshot(BaseModel):
    id: int
    name: str
    price: Decimal


class ServiceAddOnRead(SQLModel):
    id: int
    name: str
    price: Decimal


class ServiceRead(SQLModel):
    id: int
    name: str
    description: str
    price: Decimal
    add_ons: List[ServiceAddOnRead] = []
