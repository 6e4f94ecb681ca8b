from datetime import datetime, timedelta
import pytest
from sqlmodel import Session, select
from app.core.exceptions import AlreadyCompleted, Conflict, Expired, InvalidState
from app.models.checkout_session import CheckoutSession
from app.models.contact import ContactData
from app.models.service import Service, ServiceAddOn
from app.services.checkout_session_service import CheckoutSessionService
from conftest import create_user, auth_headers

CONTACT = {
    "full_name": "Ada Obi",
    "email": "Ada@Example.com",
    "phone": "+1 650-253-0000",
    "company": "Obi Labs"
}


def _add_on_ids(session: Session, service: Service):
    return [a.id for a in session.exec(
        select(ServiceAddOn).where(ServiceAddOn.service_id == service.id)).all()]


def _expire(session: Session, token: str):
    checkout = session.exec(select(CheckoutSession).where(CheckoutSession.token == token)).one()
    checkout.expires_at = datetime.utcnow() - timedelta(minutes=1)
    session.add(checkout)
    session.commit()


def test_create_session_snapshots_service_and_add_ons(client, session, landing_page):
    add_on_ids = _add_on_ids(session, landing_page)
    resp = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id,
        "selected_add_ons": add_on_ids,
        "total_price": "205000.00"
    })
    assert resp.status_code == 201, resp.text
    token = resp.json()["session_token"]
    assert token.startswith("checkout_")

    resp = client.get(f"/api/checkout-sessions/{token}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service_snapshot"]["name"] == "Landing Page"
    assert len(data["selected_add_ons"]) == 2
    assert data["is_completed"] is False
    assert data["contact_data"] is None


def test_create_session_rejects_price_mismatch(client, landing_page):
    resp = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id,
        "total_price": "1.00"
    })
    assert resp.status_code == 400
    assert "does not match" in resp.json()["detail"]


def test_create_session_rejects_inactive_service_and_foreign_add_on(client, session, landing_page):
    other = session.exec(select(Service).where(Service.name == "Ecommerce Store")).one()
    foreign_add_on = _add_on_ids(session, other)[0]
    resp = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id,
        "selected_add_ons": [foreign_add_on],
        "total_price": "150000"
    })
    assert resp.status_code == 400

    landing_page.is_active = False
    session.add(landing_page)
    session.commit()
    resp = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id,
        "total_price": "150000"
    })
    assert resp.status_code == 400


def test_attach_contact_normalizes_and_validates(client, landing_page):
    token = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id, "total_price": "150000"
    }).json()["session_token"]

    resp = client.put(f"/api/checkout-sessions/{token}/contact", json={
        "contact_data": CONTACT,
        "project_details": {"description": "Marketing site", "timeline": "2 weeks"}
    })
    assert resp.status_code == 200, resp.text
    contact = resp.json()["contact_data"]
    assert contact["email"] == "ada@example.com"
    assert contact["phone"] == "+16502530000"
    assert resp.json()["project_details"]["timeline"] == "2 weeks"

    bad = dict(CONTACT, email="not-an-email")
    resp = client.put(f"/api/checkout-sessions/{token}/contact", json={"contact_data": bad})
    assert resp.status_code == 422

    bad = dict(CONTACT, phone="12")
    resp = client.put(f"/api/checkout-sessions/{token}/contact", json={"contact_data": bad})
    assert resp.status_code == 422


def test_unknown_token_is_not_found(client):
    assert client.get("/api/checkout-sessions/checkout_missing").status_code == 404


def test_claim_is_idempotent_and_exclusive(client, session, landing_page, client_user):
    token = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id, "total_price": "150000"
    }).json()["session_token"]

    first = client.post(f"/api/checkout-sessions/{token}/claim", headers=auth_headers(client_user))
    assert first.status_code == 200
    assert first.json()["user_id"] == str(client_user.id)

    again = client.post(f"/api/checkout-sessions/{token}/claim", headers=auth_headers(client_user))
    assert again.status_code == 200

    intruder = create_user(session, "eve@example.com")
    resp = client.post(f"/api/checkout-sessions/{token}/claim", headers=auth_headers(intruder))
    assert resp.status_code == 409


def test_claim_requires_authentication(client, landing_page):
    token = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id, "total_price": "150000"
    }).json()["session_token"]
    resp = client.post(f"/api/checkout-sessions/{token}/claim")
    assert resp.status_code in (401, 403)


def test_expired_session_is_gone(client, session, landing_page, client_user):
    token = client.post("/api/checkout-sessions", json={
        "service_id": landing_page.id, "total_price": "150000", "contact_data": CONTACT
    }).json()["session_token"]
    _expire(session, token)

    assert client.get(f"/api/checkout-sessions/{token}").status_code == 410
    resp = client.put(f"/api/checkout-sessions/{token}/contact", json={"contact_data": CONTACT})
    assert resp.status_code == 410
    resp = client.post(f"/api/checkout-sessions/{token}/claim", headers=auth_headers(client_user))
    assert resp.status_code == 410

    with pytest.raises(Expired):
        CheckoutSessionService(session).consume(token, client_user.id)


def test_consume_is_single_use(session, landing_page, client_user):
    service = CheckoutSessionService(session)
    checkout = service.create(
        landing_page.id, landing_page.price, contact_data=ContactData(**CONTACT))

    consumed = service.consume(checkout.token, client_user.id)
    session.commit()
    assert consumed.is_completed
    assert consumed.completed_at is not None
    assert consumed.user_id == client_user.id

    with pytest.raises(AlreadyCompleted):
        service.consume(checkout.token, client_user.id)


def test_consume_rejects_other_owner_and_missing_contact(session, landing_page, client_user):
    service = CheckoutSessionService(session)
    owner = create_user(session, "owner@example.com")

    without_contact = service.create(landing_page.id, landing_page.price)
    with pytest.raises(InvalidState):
        service.consume(without_contact.token, client_user.id)

    claimed = service.create(
        landing_page.id, landing_page.price, contact_data=ContactData(**CONTACT))
    service.claim(claimed.token, owner.id)
    with pytest.raises(Conflict):
        service.consume(claimed.token, client_user.id)


def test_consume_loser_of_race_gets_already_completed(session, landing_page, client_user):
    service = CheckoutSessionService(session)
    checkout = service.create(
        landing_page.id, landing_page.price, contact_data=ContactData(**CONTACT))

    # Otra petición completa la sesión entre la lectura y el UPDATE
    original_get_open = service._get_open

    def get_open_then_complete(token, now):
        found = original_get_open(token, now)
        session.connection().exec_driver_sql(
            "UPDATE checkout_session SET is_completed = 1 WHERE token = ?", (token,))
        return found

    service._get_open = get_open_then_complete
    with pytest.raises(AlreadyCompleted):
        service.consume(checkout.token, client_user.id)


def test_purge_expired_removes_only_expired_sessions(client, session, landing_page, admin_user):
    service = CheckoutSessionService(session)
    live = service.create(landing_page.id, landing_page.price)
    stale = service.create(landing_page.id, landing_page.price)
    _expire(session, stale.token)

    resp = client.post("/api/admin/checkout-sessions/purge", headers=auth_headers(admin_user))
    assert resp.status_code == 200
    assert resp.json() == {"deleted": 1}

    tokens = [c.token for c in session.exec(select(CheckoutSession)).all()]
    assert tokens == [live.token]


def test_purge_requires_admin(client, client_user):
    resp = client.post("/api/admin/checkout-sessions/purge", headers=auth_headers(client_user))
    assert resp.status_code == 403
