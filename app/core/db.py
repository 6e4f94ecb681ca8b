from typing import Annotated
from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine, SQLModel
from .config import settings

# ✅ IMPORTAR TODOS LOS MODELOS
from app.models import (
    User, Service, ServiceAddOn, CheckoutSession, Order, Payment, Project,
    ReferralSettings, ReferralEarning, Referral, WithdrawalRequest
)


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    pysqlite no emite BEGIN por sí mismo, lo que rompe los SAVEPOINT
    (session.begin_nested). Dejamos que SQLAlchemy controle la transacción.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return enable_sqlite_savepoints(create_engine(database_url, **kwargs))
    return create_engine(database_url, pool_pre_ping=True, **kwargs)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)


def create_all_tables():
    """Crea todas las tablas en la base de datos"""
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]
