from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from enum import Enum
from datetime import datetime
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from .order import Order
    from .referral_earning import ReferralEarning


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    CLIENT = "CLIENT"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: Optional[str] = Field(default=None)
    phone: Optional[str] = Field(default=None)
    company_name: Optional[str] = Field(default=None)
    role: UserRole = Field(default=UserRole.CLIENT)


class User(UserBase, table=True):
    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    referral_code: Optional[str] = Field(default=None, unique=True, index=True)
    referred_by_id: Optional[UUID] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )

    # Relaciones
    orders: List["Order"] = Relationship(back_populates="user")
    referral_earning: Optional["ReferralEarning"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False}
    )
