"""HTTP-level tests: routing, authentication and the error-to-status mapping."""

from __future__ import annotations

import uuid
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from escrow_mediation.api import deps
from escrow_mediation.api.routes import health
from escrow_mediation.domain.enums import MediationStatus
from escrow_mediation.main import create_app


@pytest_asyncio.fixture
async def client(session_factory, hub):  # noqa: ANN001, ANN201
    app = create_app()
    app.state.hub = hub

    async def _session():  # noqa: ANN202
        async with session_factory() as session:
            yield session

    app.dependency_overrides[deps.get_db_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def as_user(client, users):  # noqa: ANN001, ANN201
    """Issue a request authenticated as one of the seeded users."""

    async def _request(actor, method: str, url: str, **kwargs) -> httpx.Response:  # noqa: ANN001, ANN003
        headers = {"Authorization": f"Bearer {users.token(actor)}"}
        return await client.request(method, url, headers=headers, **kwargs)

    return _request


def mediation_url(mediation_id: uuid.UUID, action: str = "") -> str:
    url = f"/api/v1/mediations/{mediation_id}"
    return f"{url}/{action}" if action else url


# ============================================================
# Lifecycle over HTTP
# ============================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_happy_path(self, as_user, users) -> None:
        resp = await as_user(
            users.seller,
            "POST",
            "/api/v1/mediations",
            json={
                "buyer_id": str(users.buyer.user_id),
                "title": "Road bike",
                "bid_amount": "100.00",
                "mediator_fee": "5.00",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == MediationStatus.PENDING_MEDIATOR_SELECTION
        mediation_id = body["id"]

        steps = [
            (users.admin, "assign-mediator", {"mediator_id": str(users.mediator.user_id)}),
            (users.mediator, "mediator-accept", None),
            (users.buyer, "buyer-confirm-and-fund", None),
            (users.seller, "seller-confirm", None),
            (users.buyer, "confirm-receipt", None),
        ]
        for actor, action, payload in steps:
            resp = await as_user(actor, "POST", mediation_url(mediation_id, action), json=payload)
            assert resp.status_code == 200, resp.text

        assert resp.json()["status"] == MediationStatus.COMPLETED

        balances = (await as_user(users.seller, "GET", "/api/v1/me/balances")).json()
        assert Decimal(balances["balance"]) == Decimal("95.00")
        ledger = (await as_user(users.mediator, "GET", "/api/v1/me/ledger")).json()
        assert [e["entry_type"] for e in ledger] == ["MEDIATION_FEE_RECEIVED"]

    @pytest.mark.asyncio
    async def test_details_list_allowed_actions(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        resp = await as_user(u.buyer, "GET", mediation_url(mediation_id))

        assert resp.status_code == 200
        body = resp.json()
        assert body["roles"] == ["buyer"]
        assert set(body["allowed_actions"]) == {"buyer_confirms_receipt", "dispute_opened"}

    @pytest.mark.asyncio
    async def test_history_and_listing(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.MEDIATION_OFFER_ACCEPTED)

        history = (await as_user(u.seller, "GET", mediation_url(mediation_id, "history"))).json()
        assert [e["event_type"] for e in history] == [
            "mediation_created",
            "assign_mediator",
            "mediator_accepts",
        ]
        listed = (await as_user(u.mediator, "GET", "/api/v1/mediations")).json()
        assert [m["id"] for m in listed] == [str(mediation_id)]

    @pytest.mark.asyncio
    async def test_chat_roundtrip(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        posted = await as_user(
            u.buyer, "POST", mediation_url(mediation_id, "chat/messages"), json={"body": "Hi"}
        )
        assert posted.status_code == 201

        unread = await as_user(u.seller, "GET", mediation_url(mediation_id, "chat/unread-count"))
        assert unread.json()["unread_count"] == 1

        read = await as_user(
            u.seller,
            "POST",
            mediation_url(mediation_id, "chat/read"),
            json={"message_ids": [posted.json()["id"]]},
        )
        assert read.json()["unread_count"] == 0

    @pytest.mark.asyncio
    async def test_notifications(self, as_user, flow) -> None:
        u = flow.users
        await flow.new(MediationStatus.MEDIATOR_ASSIGNED)

        notifications = (await as_user(u.seller, "GET", "/api/v1/me/notifications")).json()
        assert [n["type"] for n in notifications] == ["MEDIATOR_ASSIGNED"]

        resp = await as_user(
            u.seller,
            "POST",
            "/api/v1/me/notifications/read",
            json={"notification_ids": [notifications[0]["id"]]},
        )
        assert resp.json() == {"updated": 1, "unread_count": 0}


# ============================================================
# Disputes and sub-chats
# ============================================================


class TestDisputeRoutes:
    @pytest.mark.asyncio
    async def test_join_and_resolve(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.DISPUTED)

        disputes = (await as_user(u.admin, "GET", "/api/v1/disputes")).json()
        assert [d["id"] for d in disputes] == [str(mediation_id)]

        joined = await as_user(u.admin, "POST", mediation_url(mediation_id, "dispute/join"))
        assert joined.json()["overseer_ids"] == [str(u.admin.user_id)]

        resolved = await as_user(
            u.admin,
            "POST",
            mediation_url(mediation_id, "dispute/resolve"),
            json={
                "winner_id": str(u.buyer.user_id),
                "loser_id": str(u.seller.user_id),
                "resolution_notes": "Item not delivered",
            },
        )
        assert resolved.status_code == 200
        assert resolved.json()["winner_id"] == str(u.buyer.user_id)

    @pytest.mark.asyncio
    async def test_sub_chat_created_then_reused(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.DISPUTED)
        payload = {"participant_user_ids": [str(u.seller.user_id)]}

        first = await as_user(u.admin, "POST", mediation_url(mediation_id, "sub-chats"), json=payload)
        again = await as_user(u.admin, "POST", mediation_url(mediation_id, "sub-chats"), json=payload)

        assert first.status_code == 201
        assert again.status_code == 200
        assert again.json()["id"] == first.json()["id"]

        sub_chat_id = first.json()["id"]
        posted = await as_user(
            u.seller, "POST", f"/api/v1/sub-chats/{sub_chat_id}/messages", json={"body": "Proof"}
        )
        assert posted.status_code == 201
        blocked = await as_user(u.buyer, "GET", f"/api/v1/sub-chats/{sub_chat_id}/messages")
        assert blocked.status_code == 403


# ============================================================
# Error mapping
# ============================================================


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client) -> None:
        resp = await client.get("/api/v1/mediations")
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_unknown_token_is_401(self, client, users) -> None:
        resp = await client.get(
            "/api/v1/mediations", headers={"Authorization": "Bearer not-a-token"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_role_is_403(self, as_user, flow) -> None:
        mediation_id = await flow.new(MediationStatus.MEDIATOR_ASSIGNED)
        resp = await as_user(flow.users.seller, "POST", mediation_url(mediation_id, "mediator-accept"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_stranger_and_unknown_id_are_404(self, as_user, flow) -> None:
        u = flow.users
        mediation_id = await flow.create()

        stranger = await as_user(u.outsider, "GET", mediation_url(mediation_id))
        unknown = await as_user(u.seller, "GET", mediation_url(uuid.uuid4()))

        assert stranger.status_code == unknown.status_code == 404
        assert stranger.json()["error"] == unknown.json()["error"] == "MEDIATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_wrong_status_is_409(self, as_user, flow) -> None:
        mediation_id = await flow.create()
        resp = await as_user(flow.users.buyer, "POST", mediation_url(mediation_id, "confirm-receipt"))

        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "INVALID_STATE_TRANSITION"
        assert body["params"]["current_status"] == MediationStatus.PENDING_MEDIATOR_SELECTION

    @pytest.mark.asyncio
    async def test_missing_reason_is_422(self, as_user, flow) -> None:
        mediation_id = await flow.new(MediationStatus.MEDIATOR_ASSIGNED)
        resp = await as_user(
            flow.users.mediator, "POST", mediation_url(mediation_id, "mediator-reject"), json={}
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_malformed_body_is_422(self, as_user, users) -> None:
        resp = await as_user(
            users.seller,
            "POST",
            "/api/v1/mediations",
            json={"buyer_id": str(users.buyer.user_id), "title": "Bike", "bid_amount": "-1"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_insufficient_funds_is_402(self, as_user, flow) -> None:
        mediation_id = await flow.new(
            MediationStatus.MEDIATION_OFFER_ACCEPTED, bid=Decimal("300.00"), fee=Decimal("10.00")
        )
        resp = await as_user(
            flow.users.buyer, "POST", mediation_url(mediation_id, "buyer-confirm-and-fund")
        )
        assert resp.status_code == 402
        assert resp.json()["error"] == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_every_response_carries_a_request_id(self, client) -> None:
        resp = await client.get("/api/v1/mediations", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_database(self, client, session_factory, monkeypatch) -> None:
        monkeypatch.setattr(health, "get_session_factory", lambda: session_factory)
        resp = await client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["database"] == "healthy"
