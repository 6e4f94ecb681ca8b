from sqlmodel import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from fastapi import HTTPException
from app.models.referral_settings import ReferralSettings, ReferralSettingsUpdate, DEFAULT_SETTINGS_ID
from app.utils.audit import audit_log


def get_referral_settings_service(session: Session) -> ReferralSettings:
    """
    Obtiene la configuración de referidos. Si no existe el registro por
    defecto, lo crea con los valores iniciales.
    """
    settings = session.get(ReferralSettings, DEFAULT_SETTINGS_ID)
    if settings:
        return settings

    try:
        with session.begin_nested():
            settings = ReferralSettings(id=DEFAULT_SETTINGS_ID)
            session.add(settings)
    except IntegrityError:
        # Otro proceso lo creó primero
        settings = session.get(ReferralSettings, DEFAULT_SETTINGS_ID)
    session.commit()
    session.refresh(settings)
    return settings


def update_referral_settings_service(
    session: Session,
    settings_data: ReferralSettingsUpdate,
    admin_id=None
) -> ReferralSettings:
    """
    Actualiza la configuración de referidos. Solo se modifican los campos enviados.
    """
    settings = get_referral_settings_service(session)

    update_data = settings_data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(settings, field, value)
    settings.updated_at = datetime.utcnow()

    try:
        session.add(settings)
        session.commit()
        session.refresh(settings)
    except Exception as e:
        session.rollback()
        raise HTTPException(status_code=500, detail=f"Error updating referral settings: {str(e)}")

    audit_log("referral_settings_updated", admin_id, **{k: str(v) for k, v in update_data.items()})
    return settings
