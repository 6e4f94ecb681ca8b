from datetime import datetime
from decimal import Decimal
from sqlmodel import Session, select
from app.core.config import settings
from app.models.order import Order, OrderStatus
from app.models.referral import Referral
from app.models.referral_earning import ReferralEarning
from app.models.referral_settings import ReferralSettings, DEFAULT_SETTINGS_ID
from app.models.withdrawal import WithdrawalStatus
from app.services import referral_service
from app.services.withdrawal_service import WithdrawalService
from app.utils.money import percentage_of
from conftest import create_user, auth_headers


def paid_order(session: Session, buyer, total="150000.00") -> Order:
    order = Order(
        user_id=buyer.id,
        service_id=1,
        service_snapshot={"id": 1, "name": "Landing Page", "price": total},
        contact_snapshot={"full_name": "Buyer", "email": buyer.email},
        total_price=total,
        status=OrderStatus.PAID,
        paid_at=datetime.utcnow()
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def test_generate_code_is_stable(client, client_user):
    first = client.post("/api/referrals/generate-code", headers=auth_headers(client_user))
    assert first.status_code == 200
    code = first.json()["referral_code"]
    assert len(code) >= settings.HASHIDS_MIN_LENGTH
    assert first.json()["referral_link"] == f"{settings.REFERRAL_BASE_URL}{code}"

    second = client.post("/api/referrals/generate-code", headers=auth_headers(client_user))
    assert second.json()["referral_code"] == code


def test_register_referral_rules(client, session, client_user):
    referrer = create_user(session, "referrer@example.com")
    code = client.post("/api/referrals/generate-code", headers=auth_headers(referrer)).json()["referral_code"]
    own_code = client.post("/api/referrals/generate-code", headers=auth_headers(client_user)).json()["referral_code"]

    resp = client.post("/api/referrals/register", headers=auth_headers(client_user),
                       json={"referral_code": "NOPE1234"})
    assert resp.status_code == 404

    resp = client.post("/api/referrals/register", headers=auth_headers(client_user),
                       json={"referral_code": own_code})
    assert resp.status_code == 400

    resp = client.post("/api/referrals/register", headers=auth_headers(client_user),
                       json={"referral_code": code.lower()})
    assert resp.status_code == 200
    assert resp.json()["referred_by_id"] == str(referrer.id)

    # Repetir con el mismo referidor no cambia nada
    resp = client.post("/api/referrals/register", headers=auth_headers(client_user),
                       json={"referral_code": code})
    assert resp.status_code == 200

    other = create_user(session, "other@example.com")
    other_code = client.post("/api/referrals/generate-code", headers=auth_headers(other)).json()["referral_code"]
    resp = client.post("/api/referrals/register", headers=auth_headers(client_user),
                       json={"referral_code": other_code})
    assert resp.status_code == 409

    session.expire_all()
    earning = session.exec(select(ReferralEarning).where(ReferralEarning.user_id == referrer.id)).one()
    assert earning.total_referrals == 1


def test_commission_is_credited_once_per_order(session):
    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)
    order = paid_order(session, buyer)

    first = referral_service.on_order_paid(session, order)
    session.commit()
    assert first is not None
    assert first.commission_amount == Decimal("15000.00")

    assert referral_service.on_order_paid(session, order) is None
    session.commit()

    session.expire_all()
    earning = session.exec(select(ReferralEarning).where(ReferralEarning.user_id == referrer.id)).one()
    assert earning.available_balance == Decimal("15000.00")
    assert len(session.exec(select(Referral)).all()) == 1


def test_concurrent_commission_insert_loses_gracefully(session, monkeypatch):
    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)
    order = paid_order(session, buyer)

    referral_service.on_order_paid(session, order)
    session.commit()

    # Simula que la otra transacción aún no era visible al consultar
    monkeypatch.setattr(referral_service, "_find_referral", lambda session, order_id: None)
    assert referral_service.on_order_paid(session, order) is None
    session.commit()

    session.expire_all()
    earning = session.exec(select(ReferralEarning).where(ReferralEarning.user_id == referrer.id)).one()
    assert earning.available_balance == Decimal("15000.00")
    assert earning.successful_referrals == 1
    assert earning.is_consistent()


def test_no_commission_without_referrer_or_when_inactive(session):
    loner = create_user(session, "loner@example.com")
    assert referral_service.on_order_paid(session, paid_order(session, loner)) is None

    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)
    program = session.get(ReferralSettings, DEFAULT_SETTINGS_ID)
    program.is_active = False
    session.add(program)
    session.commit()
    assert referral_service.on_order_paid(session, paid_order(session, buyer)) is None
    assert session.exec(select(Referral)).all() == []


def test_commission_uses_configured_percentage(session):
    program = session.get(ReferralSettings, DEFAULT_SETTINGS_ID)
    program.commission_percentage = Decimal("7.50")
    session.add(program)
    session.commit()

    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)
    referral = referral_service.on_order_paid(session, paid_order(session, buyer, "205000.00"))
    session.commit()
    assert referral.commission_amount == Decimal("15375.00")
    assert referral.commission_percentage == Decimal("7.50")


def test_commission_rounds_half_up_once():
    assert percentage_of(Decimal("101.00"), Decimal("0.50")) == Decimal("0.51")
    assert percentage_of(Decimal("150000"), Decimal("10")) == Decimal("15000.00")
    assert percentage_of(Decimal("333.33"), Decimal("3.33")) == Decimal("11.10")


def test_dashboard_shows_earnings_and_referrals(client, session):
    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)
    referral_service.on_order_paid(session, paid_order(session, buyer))
    session.commit()
    client.post("/api/referrals/generate-code", headers=auth_headers(referrer))

    resp = client.get("/api/referrals/my-data", headers=auth_headers(referrer))
    assert resp.status_code == 200
    data = resp.json()
    assert data["referral_code"]
    assert data["referral_link"].endswith(data["referral_code"])
    assert Decimal(data["earnings"]["available_balance"]) == Decimal("15000.00")
    assert len(data["referrals"]) == 1
    assert data["referrals"][0]["status"] == "confirmed"
    assert Decimal(data["settings"]["commission_percentage"]) == Decimal("10.00")
    assert data["settings"]["base_url"] == settings.REFERRAL_BASE_URL


def test_dashboard_for_user_without_earnings(client, client_user):
    resp = client.get("/api/referrals/my-data", headers=auth_headers(client_user))
    assert resp.status_code == 200
    assert Decimal(resp.json()["earnings"]["available_balance"]) == Decimal("0")
    assert resp.json()["referral_code"] is None


def test_admin_referral_settings(client, client_user, admin_user):
    resp = client.get("/api/admin/referral-settings", headers=auth_headers(admin_user))
    assert resp.status_code == 200
    assert Decimal(resp.json()["commission_percentage"]) == Decimal("10.00")

    resp = client.patch("/api/admin/referral-settings", headers=auth_headers(admin_user),
                        json={"commission_percentage": "12.50", "minimum_withdrawal": "5000"})
    assert resp.status_code == 200
    assert Decimal(resp.json()["commission_percentage"]) == Decimal("12.50")
    assert Decimal(resp.json()["minimum_withdrawal"]) == Decimal("5000")
    assert resp.json()["payout_schedule"] == "monthly"

    resp = client.patch("/api/admin/referral-settings", headers=auth_headers(admin_user),
                        json={"commission_percentage": "150"})
    assert resp.status_code == 422

    resp = client.get("/api/admin/referral-settings", headers=auth_headers(client_user))
    assert resp.status_code == 403


def test_fractional_commissions_can_be_withdrawn_exactly(session, admin_user):
    program = session.get(ReferralSettings, DEFAULT_SETTINGS_ID)
    program.commission_percentage = Decimal("7.50")
    session.add(program)
    session.commit()

    referrer = create_user(session, "referrer@example.com")
    buyer = create_user(session, "buyer@example.com", referred_by=referrer)

    def ledger() -> ReferralEarning:
        session.expire_all()
        earning = session.exec(select(ReferralEarning).where(ReferralEarning.user_id == referrer.id)).one()
        assert earning.is_consistent()
        return earning

    # 75.01 + 25.00 + 15.38 + 7.50 + 92.59
    for total in ("1000.10", "333.33", "205.07", "99.99", "1234.57"):
        referral_service.on_order_paid(session, paid_order(session, buyer, total))
        session.commit()
        ledger()
    assert ledger().available_balance == Decimal("215.48")

    for credit in (Decimal("10.00"), Decimal("10.01")):
        assert referral_service.apply_ledger_update(
            session, referrer.id,
            total_earned=ReferralEarning.total_earned + credit,
            available_balance=ReferralEarning.available_balance + credit
        )
        session.commit()
        ledger()

    shown = ledger().available_balance
    assert shown == Decimal("235.49")
    raw = session.connection().exec_driver_sql(
        "SELECT available_balance FROM referral_earning").scalar()
    assert raw == 23549

    service = WithdrawalService(session)
    withdrawal = service.request_withdrawal(referrer.id, shown, {"account_number": "0123456789"})
    earning = ledger()
    assert earning.available_balance == Decimal("0.00")
    assert earning.pending_earnings == Decimal("235.49")

    service.process_withdrawal(withdrawal.id, WithdrawalStatus.APPROVED, admin_user.id)
    earning = ledger()
    assert earning.total_withdrawn == Decimal("235.49")
    assert earning.total_earned == Decimal("235.49")
    assert earning.pending_earnings == Decimal("0.00")
