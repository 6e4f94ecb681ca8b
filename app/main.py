import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.db import create_all_tables
from .core.config import settings
from .core.init_data import init_data
from .routers import (
    services, checkout_sessions, orders, payments, projects, referrals,
    withdrawal_admin, referral_settings, admin_orders
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Iniciando la aplicación...")
    create_all_tables()
    init_data()
    yield
    logger.info("Cerrando la aplicación...")

app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Checkout, pagos con Paystack y programa de referidos",
    version=settings.APP_VERSION,
    debug=settings.DEBUG
)

# Configuración CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

# Agregar routers
app.include_router(services.router)
app.include_router(checkout_sessions.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(projects.router)
app.include_router(referrals.router)
app.include_router(withdrawal_admin.router)
app.include_router(referral_settings.router)
app.include_router(admin_orders.router)
