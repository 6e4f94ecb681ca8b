from typing import List
from fastapi import APIRouter
from app.core.db import SessionDep
from app.models.service import ServiceRead
from app.services.service_catalog_service import list_active_services

router = APIRouter(prefix="/api/services", tags=["services"])


@router.get("", response_model=List[ServiceRead], description="""
Lista los servicios activos con sus add-ons disponibles.
""")
def list_services(session: SessionDep):
    return list_active_services(session)
