import jwt
import pytest
from fastapi.testclient import TestClient

from recicla.core.config import settings
from recicla.api.deps import get_identity
from recicla.main import create_app
from recicla.models.user import UserRole
from recicla.services.storage import LocalObjectStorage


def auth(user_id: str, **claims) -> dict:
    token = jwt.encode({"sub": user_id, **claims}, settings.SECRET_KEY, algorithm=settings.TOKEN_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store, tmp_path):
    app = create_app(store)
    app.state.storage = LocalObjectStorage(tmp_path / "media", "/media")
    with TestClient(app) as c:
        yield c


@pytest.fixture
def staff(make_user):
    make_user("olga", role=UserRole.OPERATOR, name="Olga")
    make_user("root", role=UserRole.ADMIN, name="Root")


class TestAuth:
    def test_missing_or_bad_token(self, client):
        assert client.get("/users/me").status_code == 401
        assert client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401

    def test_unregistered_identity(self, client):
        assert client.get("/users/me", headers=auth("nobody")).status_code == 401

    def test_register_is_idempotent(self, client):
        first = client.post("/users/register", json={"display_name": "Ana"}, headers=auth("ana", email="ana@example.com"))
        second = client.post("/users/register", json={"display_name": "Other"}, headers=auth("ana"))

        assert first.status_code == 201
        assert first.json()["email"] == "ana@example.com"
        assert second.json()["display_name"] == "Ana"
        me = client.get("/users/me", headers=auth("ana")).json()
        assert me["points"] == 0
        assert me["role"] == "citizen"


class TestDeliveryFlow:
    def test_submit_review_and_balance(self, client, staff):
        client.post("/users/register", json={"display_name": "Ana"}, headers=auth("ana"))

        created = client.post("/deliveries", json={"material": "pet", "weight_kg": 3.0}, headers=auth("ana"))
        assert created.status_code == 201
        delivery = created.json()
        assert delivery["points"] == 30
        assert delivery["status"] == "pending"

        reviewed = client.post(f"/deliveries/{delivery['id']}/review", json={"approve": True}, headers=auth("olga"))
        assert reviewed.status_code == 200
        assert reviewed.json()["status"] == "approved"
        assert client.get("/points/balance", headers=auth("ana")).json() == {"user_id": "ana", "points": 30}

        again = client.post(f"/deliveries/{delivery['id']}/review", json={"approve": False}, headers=auth("root"))
        assert again.status_code == 409
        assert again.json()["kind"] == "invalid_state"

        stats = client.get("/users/me/stats", headers=auth("ana")).json()
        assert stats["approved"] == 1
        assert stats["total_points"] == 30

    def test_citizen_cannot_review_or_see_queue(self, client):
        client.post("/users/register", json={"display_name": "Ana"}, headers=auth("ana"))
        d = client.post("/deliveries", json={"material": "glass", "weight_kg": 1.0}, headers=auth("ana")).json()

        assert client.get("/deliveries/pending", headers=auth("ana")).status_code == 403
        denied = client.post(f"/deliveries/{d['id']}/review", json={"approve": True}, headers=auth("ana"))
        assert denied.status_code == 403
        assert denied.json()["kind"] == "unauthorized"

    def test_weight_bounds_and_withdraw(self, client):
        client.post("/users/register", json={"display_name": "Ana"}, headers=auth("ana"))

        too_heavy = client.post("/deliveries", json={"material": "metal", "weight_kg": 2000}, headers=auth("ana"))
        assert too_heavy.status_code == 422
        assert too_heavy.json()["kind"] == "invalid_input"

        d = client.post("/deliveries", json={"material": "metal", "weight_kg": 2}, headers=auth("ana")).json()
        assert client.delete(f"/deliveries/{d['id']}", headers=auth("ana")).status_code == 204
        assert client.get(f"/deliveries/{d['id']}", headers=auth("ana")).status_code == 404

    def test_materials(self, client):
        rates = {m["material"]: m["points_per_kg"] for m in client.get("/deliveries/materials").json()}
        assert rates["pet"] == 10
        assert rates["electronic"] == 20


class TestRedemptionFlow:
    def test_redeem_last_unit(self, client, staff, make_user):
        make_user("ana", points=300, name="Ana")
        make_user("bea", points=300, name="Bea")

        denied = client.post("/rewards", json={"title": "Pool", "cost_points": 100}, headers=auth("ana"))
        assert denied.status_code == 403

        reward = client.post(
            "/rewards",
            json={"title": "Pool", "cost_points": 100, "available_quantity": 1, "category": "sport"},
            headers=auth("root"),
        ).json()
        assert reward["is_unlimited"] is False

        won = client.post("/redemptions", json={"reward_id": reward["id"]}, headers=auth("ana"))
        assert won.status_code == 201
        lost = client.post("/redemptions", json={"reward_id": reward["id"]}, headers=auth("bea"))
        assert lost.status_code == 409
        assert lost.json()["kind"] == "exhausted"
        assert client.get(f"/rewards/{reward['id']}").json()["available_quantity"] == 0

        cancelled = client.post(f"/redemptions/{won.json()['id']}/cancel", json={}, headers=auth("ana"))
        assert cancelled.json()["status"] == "cancelled"
        assert client.get("/points/balance", headers=auth("ana")).json()["points"] == 300
        assert client.get(f"/rewards/{reward['id']}").json()["available_quantity"] == 1

    def test_insufficient_balance(self, client, staff, make_user):
        make_user("ana", points=50, name="Ana")
        reward = client.post("/rewards", json={"title": "Pool", "cost_points": 100}, headers=auth("root")).json()

        resp = client.post("/redemptions", json={"reward_id": reward["id"]}, headers=auth("ana"))
        assert resp.status_code == 409
        assert resp.json()["kind"] == "insufficient_balance"

    def test_review_and_deliver(self, client, staff, make_user):
        make_user("ana", points=300, name="Ana")
        reward = client.post("/rewards", json={"title": "Pool", "cost_points": 100}, headers=auth("root")).json()
        red = client.post("/redemptions", json={"reward_id": reward["id"]}, headers=auth("ana")).json()

        assert [r["id"] for r in client.get("/redemptions/pending", headers=auth("olga")).json()] == [red["id"]]
        client.post(f"/redemptions/{red['id']}/review", json={"approve": True}, headers=auth("olga"))
        delivered = client.post(
            f"/redemptions/{red['id']}/deliver", json={"receipt_url": "/media/receipts/1.jpg"}, headers=auth("olga")
        ).json()

        assert delivered["status"] == "delivered"
        assert delivered["receipt_url"] == "/media/receipts/1.jpg"
        assert client.get(f"/redemptions/{red['id']}", headers=auth("ana")).json()["status"] == "delivered"


class TestPoints:
    def test_admin_adjustment_and_history(self, client, staff, make_user):
        make_user("ana", points=40, name="Ana")

        resp = client.post("/points/users/ana/adjust", json={"amount": -15, "reason": "duplicate"}, headers=auth("root"))
        assert resp.status_code == 201
        assert resp.json()["balance_after"] == 25

        assert client.post("/points/users/ana/adjust", json={"amount": 5}, headers=auth("olga")).status_code == 403
        assert client.post("/points/users/ana/adjust", json={"amount": 0}, headers=auth("root")).status_code == 422

        history = client.get("/points/history", headers=auth("ana")).json()
        assert [h["amount"] for h in history] == [-15, 40]

    def test_ranking(self, client, make_user):
        make_user("ana", points=40, name="Ana")
        make_user("bea", points=90, name="Bea")

        ranking = client.get("/users/ranking", headers=auth("ana")).json()
        assert [r["id"] for r in ranking] == ["bea", "ana"]


class StaticIdentity:
    def __init__(self, user_id, email=None):
        self.user_id = user_id
        self.email = email

    def current_user_id(self):
        return self.user_id

    def is_authenticated(self):
        return self.user_id is not None


class TestAppWiring:
    def test_any_identity_provider_can_be_plugged_in(self, store):
        app = create_app(store)
        app.dependency_overrides[get_identity] = lambda: StaticIdentity("ana", "ana@example.com")
        with TestClient(app) as client:
            created = client.post("/users/register", json={"display_name": "Ana"})
            assert created.status_code == 201
            assert created.json()["email"] == "ana@example.com"
            assert client.get("/users/me").json()["id"] == "ana"

    def test_factory_opens_no_store_until_startup(self):
        app = create_app()
        assert app.state.store is None

    def test_clearing_required_fields_is_an_input_error(self, client, staff, make_user):
        make_user("ana", name="Ana")
        reward = client.post("/rewards", json={"title": "Pool", "cost_points": 100}, headers=auth("root")).json()

        for body in ({"cost_points": None}, {"title": None}):
            resp = client.patch(f"/rewards/{reward['id']}", json=body, headers=auth("root"))
            assert resp.status_code == 422
            assert resp.json()["kind"] == "invalid_input"

        resp = client.patch("/users/me", json={"display_name": None}, headers=auth("ana"))
        assert resp.status_code == 422
        assert resp.json()["kind"] == "invalid_input"
        assert client.get("/users/me", headers=auth("ana")).json()["display_name"] == "Ana"
