import logging
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status, Query

from app.core.dependencies.admin_auth import get_current_admin
from app.core.db import SessionDep
from app.services.withdrawal_service import WithdrawalService
from app.models.withdrawal import WithdrawalStatus, WithdrawalRead, WithdrawalProcessRequest

router = APIRouter(
    prefix="/api/admin/withdrawals",
    tags=["ADMIN"]
)


@router.get("", response_model=List[WithdrawalRead], description="""
Lista las solicitudes de retiro, opcionalmente filtradas por estado.

**Parámetros:**
- `status`: "pending", "approved", "completed" o "rejected".
- `skip`, `limit`: paginación.
""")
def list_withdrawals(
    session: SessionDep,
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    current_admin=Depends(get_current_admin)
):
    withdrawals = WithdrawalService(session).list_withdrawals(status_filter, skip, limit)
    return [WithdrawalRead.from_withdrawal(w) for w in withdrawals]


@router.patch("/{withdrawal_id}", response_model=WithdrawalRead, status_code=status.HTTP_200_OK, description="""
Procesa una solicitud de retiro.

**Transiciones permitidas:**
- `pending` -> `approved` / `completed`: el monto reservado se da por retirado.
- `pending` -> `rejected`: el monto vuelve al saldo disponible.
- `approved` -> `completed`: solo cambia el estado.

Cualquier otra transición responde 409.
""")
def process_withdrawal(
    withdrawal_id: UUID,
    data: WithdrawalProcessRequest,
    session: SessionDep,
    current_admin=Depends(get_current_admin)
):
    service = WithdrawalService(session)
    try:
        withdrawal = service.process_withdrawal(
            withdrawal_id, data.status, current_admin.id, data.admin_notes)
        return WithdrawalRead.from_withdrawal(withdrawal)
    except HTTPException as e:
        raise e
    except Exception:
        logging.exception("Unexpected error processing withdrawal")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )
