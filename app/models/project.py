from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4


class Project(SQLModel, table=True):
    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True, unique=True)
    # Un pedido pagado produce a lo sumo un proyecto
    order_id: UUID = Field(foreign_key="order.id", unique=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    project_name: str
    description: Optional[str] = None
    current_stage: str = Field(default="Discovery")
    status: str = Field(default="active")
    notes: Optional[str] = None
    start_date: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    due_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class ProjectRead(SQLModel):
    id: UUID
    order_id: UUID
    project_name: str
    description: Optional[str] = None
    current_stage: str
    status: str
    notes: Optional[str] = None
    start_date: datetime
    due_date: Optional[datetime] = None
