from fastapi import APIRouter, Depends

from app.core.dependencies.admin_auth import get_current_admin
from app.core.db import SessionDep
from app.models.referral_settings import ReferralSettings, ReferralSettingsUpdate
from app.services.referral_settings_service import (
    get_referral_settings_service,
    update_referral_settings_service
)

router = APIRouter(prefix="/api/admin/referral-settings", tags=["ADMIN: Referral Settings"])


@router.get("", response_model=ReferralSettings, description="""
Obtiene la configuración actual del programa de referidos.
""")
def get_referral_settings(session: SessionDep, current_admin=Depends(get_current_admin)):
    return get_referral_settings_service(session)


@router.patch("", response_model=ReferralSettings, description="""
Actualiza la configuración del programa de referidos.

**Parámetros:**
- Solo envía los campos que quieres actualizar
- Los campos no enviados mantendrán su valor actual

**Ejemplo:**
```json
{
    "commission_percentage": "12.50",
    "minimum_withdrawal": "5000.00"
}
```
""")
def update_referral_settings(
    session: SessionDep,
    settings_data: ReferralSettingsUpdate,
    current_admin=Depends(get_current_admin)
):
    return update_referral_settings_service(session, settings_data, current_admin.id)
