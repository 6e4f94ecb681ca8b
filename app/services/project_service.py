import logging
from datetime import datetime, timedelta
from typing import List
from uuid import UUID
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError
from app.models.order import Order, OrderStatus
from app.models.project import Project

logger = logging.getLogger(__name__)

# Semanas estimadas por tipo de servicio
DEFAULT_DURATION_WEEKS = 4
DURATION_WEEKS_BY_KEYWORD = {
    "landing": 2,
    "ecommerce": 6,
    "e-commerce": 6,
    "custom": 8,
}


def estimate_due_date(service_name: str, start: datetime) -> datetime:
    name = (service_name or "").lower()
    weeks = DEFAULT_DURATION_WEEKS
    for keyword, keyword_weeks in DURATION_WEEKS_BY_KEYWORD.items():
        if keyword in name:
            weeks = keyword_weeks
            break
    return start + timedelta(weeks=weeks)


def _find_project(session: Session, order_id: UUID):
    return session.exec(select(Project).where(Project.order_id == order_id)).first()


def provision_project(session: Session, order: Order) -> Project:
    """
    Crea el proyecto de un pedido pagado. Idempotente: si ya existe (o lo
    crea otra transacción en paralelo) devuelve el existente.

    No hace commit; se ejecuta dentro de la transacción de confirmación.
    """
    existing = _find_project(session, order.id)
    if existing:
        return existing

    service_name = (order.service_snapshot or {}).get("name", "Project")
    details = order.project_details or {}
    now = datetime.utcnow()
    project = Project(
        order_id=order.id,
        user_id=order.user_id,
        project_name=service_name,
        description=details.get("description") or None,
        notes=details.get("timeline"),
        start_date=now,
        due_date=estimate_due_date(service_name, now),
        created_at=now
    )
    try:
        with session.begin_nested():
            session.add(project)
    except IntegrityError:
        logger.info("Project for order %s already created concurrently", order.id)
        existing = _find_project(session, order.id)
        if existing is None:
            raise
        return existing

    logger.info("Provisioned project %s for order %s", project.id, order.id)
    return project


def ensure_projects_for_paid_orders(session: Session, user_id: UUID) -> List[Project]:
    """Crea los proyectos que falten para los pedidos pagados del usuario."""
    orders = session.exec(
        select(Order)
        .outerjoin(Project, Project.order_id == Order.id)
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.PAID,
            Project.id.is_(None)
        )
    ).all()
    created = [provision_project(session, order) for order in orders]
    if created:
        session.commit()
        logger.info("Backfilled %s projects for user %s", len(created), user_id)
    return created
