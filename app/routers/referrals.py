import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from app.core.db import SessionDep
from app.core.dependencies.auth import get_current_user, CurrentUser
from app.models.referral import ReferralCodeResponse, ReferralRegisterRequest, ReferralDashboard
from app.models.withdrawal import WithdrawalCreate, WithdrawalRead
from app.services import referral_service
from app.services.withdrawal_service import WithdrawalService

router = APIRouter(prefix="/api/referrals", tags=["referrals"])


@router.post("/generate-code", response_model=ReferralCodeResponse, description="""
Devuelve el código de referido del usuario autenticado, creándolo la primera vez.
""")
def generate_code(session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    return referral_service.generate_referral_code(session, current_user.id)


@router.post("/register", status_code=status.HTTP_200_OK, description="""
Registra al usuario autenticado como referido del dueño de `referral_code`.
No se puede cambiar de referidor ni usar el código propio.
""")
def register(
    data: ReferralRegisterRequest,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user)
):
    user = referral_service.register_referral(session, current_user.id, data.referral_code)
    return {"message": "Referral registered", "referred_by_id": user.referred_by_id}


@router.get("/my-data", response_model=ReferralDashboard)
def my_referral_data(session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    """
    Código, saldos, comisiones y configuración pública del programa.
    """
    try:
        return referral_service.get_referral_dashboard(session, current_user.id)
    except HTTPException:
        raise
    except Exception:
        logging.exception("Unexpected error loading referral data")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error loading referral data"
        )


@router.post("/request-withdrawal", response_model=WithdrawalRead, status_code=status.HTTP_201_CREATED, description="""
Solicita el retiro de parte del saldo disponible.

El monto queda reservado (pasa a `pending_earnings`) hasta que un
administrador aprueba o rechaza la solicitud.

**Errores:**
- 400 si el monto es menor al mínimo o supera el saldo disponible.
""")
def request_withdrawal(
    data: WithdrawalCreate,
    session: SessionDep,
    current_user: CurrentUser = Depends(get_current_user)
):
    withdrawal = WithdrawalService(session).request_withdrawal(
        current_user.id, data.amount, data.payment_details, data.payment_method)
    return WithdrawalRead.from_withdrawal(withdrawal)


@router.get("/withdrawals", response_model=List[WithdrawalRead])
def my_withdrawals(session: SessionDep, current_user: CurrentUser = Depends(get_current_user)):
    """Historial de retiros del usuario autenticado."""
    withdrawals = WithdrawalService(session).list_user_withdrawals(current_user.id)
    return [WithdrawalRead.from_withdrawal(w) for w in withdrawals]
