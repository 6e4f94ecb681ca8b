from typing import List, Sequence, Tuple
from decimal import Decimal
from sqlmodel import Session, select
from sqlalchemy.orm import selectinload
from app.core.exceptions import InvalidService, PriceMismatch
from app.models.service import Service, ServiceAddOn, ServiceSnapshot, AddOnSnapshot, ServiceRead
from app.utils.money import money_sum, quantize_money, to_decimal


def build_service_snapshot(
    session: Session,
    service_id: int,
    add_on_ids: Sequence[int] = ()
) -> Tuple[ServiceSnapshot, List[AddOnSnapshot]]:
    """
    Copia el servicio y sus add-ons tal como están ahora. Falla con
    InvalidService si el servicio o algún add-on no está disponible.
    """
    service = session.get(Service, service_id)
    if not service or not service.is_active:
        raise InvalidService(f"Service {service_id} is not available")

    snapshot = ServiceSnapshot(id=service.id, name=service.name, price=service.price)

    add_ons: List[AddOnSnapshot] = []
    unique_ids = list(dict.fromkeys(add_on_ids))
    if unique_ids:
        rows = session.exec(
            select(ServiceAddOn).where(ServiceAddOn.id.in_(unique_ids))
        ).all()
        by_id = {row.id: row for row in rows}
        for add_on_id in unique_ids:
            add_on = by_id.get(add_on_id)
            if not add_on or not add_on.is_active or add_on.service_id != service.id:
                raise InvalidService(
                    f"Add-on {add_on_id} is not available for service {service.id}")
            add_ons.append(AddOnSnapshot(id=add_on.id, name=add_on.name, price=add_on.price))

    return snapshot, add_ons


def expected_total(snapshot: ServiceSnapshot, add_ons: Sequence[AddOnSnapshot]) -> Decimal:
    return quantize_money(to_decimal(snapshot.price) + money_sum(a.price for a in add_ons))


def assert_price_matches(snapshot: ServiceSnapshot, add_ons: Sequence[AddOnSnapshot], total_price) -> Decimal:
    """El total enviado por el cliente no es confiable; se recalcula aquí."""
    expected = expected_total(snapshot, add_ons)
    if quantize_money(to_decimal(total_price)) != expected:
        raise PriceMismatch(
            f"Total price {total_price} does not match expected {expected}")
    return expected


def list_active_services(session: Session) -> List[ServiceRead]:
    services = session.exec(
        select(Service)
        .where(Service.is_active == True)
        .options(selectinload(Service.add_ons))
        .order_by(Service.id)
    ).all()
    return [
        ServiceRead(
            id=service.id,
            name=service.name,
            description=service.description,
            price=service.price,
            add_ons=[
                {"id": a.id, "name": a.name, "price": a.price}
                for a in service.add_ons if a.is_active
            ]
        )
        for service in services
    ]
