import logging
from decimal import Decimal
from sqlmodel import Session, select
from app.core.db import engine
from app.models.service import Service, ServiceAddOn
from app.models.referral_settings import ReferralSettings, DEFAULT_SETTINGS_ID
from app.services.checkout_session_service import CheckoutSessionService

logger = logging.getLogger(__name__)

# Catálogo inicial: (nombre, descripción, precio, [(add-on, precio)])
DEFAULT_SERVICES = [
    (
        "Landing Page",
        "Single page website with contact form",
        Decimal("150000.00"),
        [("SEO Setup", Decimal("25000.00")), ("Copywriting", Decimal("30000.00"))],
    ),
    (
        "Ecommerce Store",
        "Online store with product catalog and checkout",
        Decimal("450000.00"),
        [("Payment Integration", Decimal("50000.00")), ("Inventory Sync", Decimal("75000.00"))],
    ),
    (
        "Custom Web Application",
        "Tailor-made web application",
        Decimal("900000.00"),
        [("Admin Dashboard", Decimal("120000.00")), ("Maintenance (3 months)", Decimal("90000.00"))],
    ),
]


def init_referral_settings(session: Session):
    if not session.get(ReferralSettings, DEFAULT_SETTINGS_ID):
        session.add(ReferralSettings(id=DEFAULT_SETTINGS_ID))
        session.commit()
        logger.info("Default referral settings created")


def init_services(session: Session):
    for name, description, price, add_ons in DEFAULT_SERVICES:
        exists = session.exec(select(Service).where(Service.name == name)).first()
        if exists:
            continue
        service = Service(name=name, description=description, price=price)
        session.add(service)
        session.flush()
        for add_on_name, add_on_price in add_ons:
            session.add(ServiceAddOn(service_id=service.id, name=add_on_name, price=add_on_price))
    session.commit()


def init_data(bind=None):
    """Datos mínimos para arrancar: configuración de referidos y catálogo."""
    with Session(bind or engine) as session:
        try:
            # 1. Configuración del programa de referidos
            init_referral_settings(session)

            # 2. Catálogo de servicios
            init_services(session)

            # 3. Limpieza de sesiones de checkout vencidas
            CheckoutSessionService(session).purge_expired()

            logger.info("Data initialization completed")
        except Exception:
            logger.exception("Data initialization failed")
            raise
