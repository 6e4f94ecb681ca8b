import logging
from typing import Optional, Any
from uuid import UUID

audit_logger = logging.getLogger("app.audit")


def audit_log(action: str, user_id: Optional[UUID] = None, level: int = logging.INFO, **details: Any) -> None:
    """Registra un evento de auditoría (pedidos, pagos, retiros)."""
    audit_logger.log(
        level,
        "%s user=%s %s",
        action,
        user_id,
        " ".join(f"{key}={value}" for key, value in details.items()),
        extra={"audit_action": action, "audit_user_id": str(user_id) if user_id else None}
    )
