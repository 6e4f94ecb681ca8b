from decimal import Decimal
from uuid import UUID
import pytest
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, SQLModel, select
from app.core.db import build_engine
from app.core.exceptions import InsufficientBalance, InvalidState
from app.core.init_data import init_referral_settings
from app.models.referral_earning import ReferralEarning
from app.models.user import User
from app.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from app.services.withdrawal_service import WithdrawalService
from conftest import create_user, auth_headers, fund_earnings

PAYMENT_DETAILS = {
    "bank_name": "First Bank",
    "account_name": "Ada Obi",
    "account_number": "0123456789"
}


def balance(session: Session, user) -> ReferralEarning:
    session.expire_all()
    return session.exec(select(ReferralEarning).where(ReferralEarning.user_id == user.id)).one()


def request(client, user, amount):
    return client.post("/api/referrals/request-withdrawal", headers=auth_headers(user), json={
        "amount": amount, "payment_details": PAYMENT_DETAILS
    })


def test_request_reserves_balance_and_masks_details(client, session, client_user):
    fund_earnings(session, client_user, Decimal("50000.00"))

    resp = request(client, client_user, "20000")
    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["status"] == "pending"
    assert data["payment_details"]["bank_name"] == "First Bank"
    assert data["payment_details"]["account_number"] == "****6789"

    earning = balance(session, client_user)
    assert earning.available_balance == Decimal("30000.00")
    assert earning.pending_earnings == Decimal("20000.00")
    assert earning.is_consistent()

    stored = session.exec(select(WithdrawalRequest)).one()
    assert "0123456789" not in stored.payment_details
    assert stored.get_decrypted_payment_details() == PAYMENT_DETAILS

    resp = client.get("/api/referrals/withdrawals", headers=auth_headers(client_user))
    assert [w["id"] for w in resp.json()] == [data["id"]]


def test_request_above_balance_fails_without_side_effects(client, session, client_user):
    fund_earnings(session, client_user, Decimal("50000.00"))

    resp = request(client, client_user, "60000")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Insufficient balance"

    earning = balance(session, client_user)
    assert earning.available_balance == Decimal("50000.00")
    assert earning.pending_earnings == Decimal("0.00")
    assert session.exec(select(WithdrawalRequest)).all() == []


def test_request_below_minimum_or_without_ledger(client, session, client_user):
    resp = request(client, client_user, "100")
    assert resp.status_code == 400
    assert "Insufficient" in resp.json()["detail"]

    fund_earnings(session, client_user, Decimal("50000.00"))
    resp = request(client, client_user, "49.99")
    assert resp.status_code == 400
    assert "Minimum" in resp.json()["detail"]

    resp = request(client, client_user, "-5")
    assert resp.status_code == 422


def test_concurrent_requests_never_overdraw(tmp_path):
    # Dos conexiones reales sobre el mismo archivo SQLite
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as setup:
        init_referral_settings(setup)
        user = User(email="ada@example.com")
        setup.add(user)
        setup.commit()
        user_id = user.id
        setup.add(ReferralEarning(
            user_id=user_id, total_earned=Decimal("50000"), available_balance=Decimal("50000")))
        setup.commit()

    first = Session(engine, expire_on_commit=False)
    second = Session(engine, expire_on_commit=False)
    try:
        # Ambas leen el mismo saldo antes de que cualquiera reserve
        for s in (first, second):
            seen = s.exec(select(ReferralEarning).where(ReferralEarning.user_id == user_id)).one()
            assert seen.available_balance == Decimal("50000.00")
            s.commit()

        WithdrawalService(first).request_withdrawal(user_id, Decimal("40000"), PAYMENT_DETAILS)
        with pytest.raises(InsufficientBalance):
            WithdrawalService(second).request_withdrawal(user_id, Decimal("40000"), PAYMENT_DETAILS)
    finally:
        first.close()
        second.close()

    with Session(engine) as check:
        earning = check.exec(select(ReferralEarning).where(ReferralEarning.user_id == user_id)).one()
        assert earning.available_balance == Decimal("10000.00")
        assert earning.pending_earnings == Decimal("40000.00")
        assert earning.is_consistent()
        assert len(check.exec(select(WithdrawalRequest)).all()) == 1
    engine.dispose()


def test_approve_then_complete(client, session, client_user, admin_user):
    fund_earnings(session, client_user, Decimal("50000.00"))
    withdrawal_id = request(client, client_user, "20000").json()["id"]
    url = f"/api/admin/withdrawals/{withdrawal_id}"

    resp = client.patch(url, headers=auth_headers(admin_user),
                        json={"status": "approved", "admin_notes": "Paid by transfer"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "approved"
    assert resp.json()["processed_by"] == str(admin_user.id)
    assert resp.json()["processed_at"] is not None

    earning = balance(session, client_user)
    assert earning.pending_earnings == Decimal("0.00")
    assert earning.total_withdrawn == Decimal("20000.00")
    assert earning.available_balance == Decimal("30000.00")

    resp = client.patch(url, headers=auth_headers(admin_user), json={"status": "completed"})
    assert resp.status_code == 200
    earning = balance(session, client_user)
    assert earning.total_withdrawn == Decimal("20000.00")
    assert earning.is_consistent()

    resp = client.patch(url, headers=auth_headers(admin_user), json={"status": "rejected"})
    assert resp.status_code == 409


def test_reject_returns_reservation(client, session, client_user, admin_user):
    fund_earnings(session, client_user, Decimal("50000.00"))
    withdrawal_id = request(client, client_user, "20000").json()["id"]

    resp = client.patch(f"/api/admin/withdrawals/{withdrawal_id}", headers=auth_headers(admin_user),
                        json={"status": "rejected", "admin_notes": "Wrong account"})
    assert resp.status_code == 200

    earning = balance(session, client_user)
    assert earning.available_balance == Decimal("50000.00")
    assert earning.pending_earnings == Decimal("0.00")
    assert earning.total_withdrawn == Decimal("0.00")


def test_pending_can_complete_directly(session, client_user, admin_user):
    fund_earnings(session, client_user, Decimal("50000.00"))
    service = WithdrawalService(session)
    withdrawal = service.request_withdrawal(client_user.id, Decimal("50000"), PAYMENT_DETAILS)

    done = service.process_withdrawal(withdrawal.id, WithdrawalStatus.COMPLETED, admin_user.id)
    assert done.status == WithdrawalStatus.COMPLETED

    earning = balance(session, client_user)
    assert earning.available_balance == Decimal("0.00")
    assert earning.total_withdrawn == Decimal("50000.00")

    with pytest.raises(InvalidState):
        service.process_withdrawal(withdrawal.id, WithdrawalStatus.PENDING, admin_user.id)


def test_status_change_applies_ledger_once(session, client_user, admin_user):
    fund_earnings(session, client_user, Decimal("50000.00"))
    service = WithdrawalService(session)
    withdrawal = service.request_withdrawal(client_user.id, Decimal("20000"), PAYMENT_DETAILS)
    service.process_withdrawal(withdrawal.id, WithdrawalStatus.REJECTED, admin_user.id)

    # Un segundo administrador con una copia desactualizada de la solicitud
    stale = session.get(WithdrawalRequest, withdrawal.id)
    set_committed_value(stale, "status", WithdrawalStatus.PENDING)
    with pytest.raises(InvalidState):
        service.process_withdrawal(withdrawal.id, WithdrawalStatus.REJECTED, admin_user.id)

    earning = balance(session, client_user)
    assert earning.available_balance == Decimal("50000.00")
    assert earning.pending_earnings == Decimal("0.00")


def test_admin_list_filters_by_status(client, session, client_user, admin_user):
    fund_earnings(session, client_user, Decimal("50000.00"))
    first = request(client, client_user, "10000").json()["id"]
    request(client, client_user, "10000")
    client.patch(f"/api/admin/withdrawals/{first}", headers=auth_headers(admin_user),
                 json={"status": "approved"})

    resp = client.get("/api/admin/withdrawals?status=pending", headers=auth_headers(admin_user))
    assert resp.status_code == 200
    assert len(resp.json()) == 1
    assert len(client.get("/api/admin/withdrawals", headers=auth_headers(admin_user)).json()) == 2

    assert client.get("/api/admin/withdrawals", headers=auth_headers(client_user)).status_code == 403


def test_unknown_withdrawal_is_not_found(client, admin_user):
    resp = client.patch(f"/api/admin/withdrawals/{UUID(int=0)}", headers=auth_headers(admin_user),
                        json={"status": "approved"})
    assert resp.status_code == 404
