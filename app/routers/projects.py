from typing import List
from fastapi import APIRouter, Depends
from sqlmodel import select
from app.core.db import SessionDep
from app.core.dependencies.auth import get_current_user, CurrentUser
from app.models.project import Project, ProjectRead
from app.services.project_service import ensure_projects_for_paid_orders

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=List[ProjectRead], description="""
Proyectos del usuario autenticado (todos si es administrador).

Antes de listar se crean los proyectos que falten para pedidos ya pagados.
""")
def list_projects(session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    query = select(Project)
    if not current_user.is_admin:
        ensure_projects_for_paid_orders(session, current_user.id)
        query = query.where(Project.user_id == current_user.id)
    return session.exec(query.order_by(Project.created_at.desc())).all()
