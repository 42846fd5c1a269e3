"""
Integration tests for the REST API endpoints.

The app is built with ``create_app`` against a per-test SQLite file and
without the background reaper, so no Redis is needed.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.infrastructure.database import Base


@pytest_asyncio.fixture
async def client(settings):
    app = create_app(settings, run_reaper=False)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.engine.dispose()


def _ride_body(**overrides):
    body = {
        "passenger_id": 1,
        "pickup": {"lat": 28.55, "lng": 77.10, "address": "T3 Arrivals"},
        "dropoff": {"lat": 28.63, "lng": 77.18, "address": "Connaught Place"},
        "luggage_count": 1,
    }
    body.update(overrides)
    return body


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_ride_pools_immediately(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=_ride_body())
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "pooled"
    assert data["pool_id"] is not None
    assert data["estimated_price"] > 0
    assert data["pickup"]["address"] == "T3 Arrivals"


@pytest.mark.asyncio
async def test_second_ride_shares_pool(client: AsyncClient):
    first = (await client.post("/api/v1/rides", json=_ride_body())).json()
    second = (
        await client.post(
            "/api/v1/rides",
            json=_ride_body(passenger_id=2, pickup={"lat": 28.5505, "lng": 77.1005}),
        )
    ).json()

    assert second["pool_id"] == first["pool_id"]
    # Shared riders get the pair discount
    assert second["estimated_price"] < first["estimated_price"]


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient):
    created = (await client.post("/api/v1/rides", json=_ride_body())).json()

    resp = await client.get(f"/api/v1/rides/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_get_nonexistent_ride_returns_404(client: AsyncClient):
    resp = await client.get("/api/v1/rides/99999")
    assert resp.status_code == 404
    body = resp.json()
    assert body["ride_id"] == 99999
    assert body["retryable"] is False


@pytest.mark.asyncio
async def test_idempotency_key(client: AsyncClient):
    body = _ride_body(idempotency_key="unique-key-123")
    r1 = await client.post("/api/v1/rides", json=body)
    r2 = await client.post("/api/v1/rides", json=body)
    assert r1.json()["id"] == r2.json()["id"]


@pytest.mark.asyncio
async def test_invalid_luggage_rejected(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=_ride_body(luggage_count=5))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_invalid_coordinates_rejected(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides", json=_ride_body(pickup={"lat": 128.0, "lng": 77.10})
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cancel_ride(client: AsyncClient):
    created = (await client.post("/api/v1/rides", json=_ride_body())).json()

    resp = await client.patch(f"/api/v1/rides/{created['id']}/cancel")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "cancelled"
    assert data["cancelled_at"] is not None
    assert data["pool_id"] is None


@pytest.mark.asyncio
async def test_cancel_already_cancelled_returns_409(client: AsyncClient):
    created = (await client.post("/api/v1/rides", json=_ride_body())).json()
    await client.patch(f"/api/v1/rides/{created['id']}/cancel")

    resp = await client.patch(f"/api/v1/rides/{created['id']}/cancel")
    assert resp.status_code == 409
    assert "Retry-After" not in resp.headers


@pytest.mark.asyncio
async def test_estimate(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides/estimate",
        json={
            "pickup": {"lat": 28.55, "lng": 77.10},
            "dropoff": {"lat": 28.63, "lng": 77.18},
            "luggage_count": 2,
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["luggage_fee"] == 10.0
    assert data["currency"] == "INR"
    assert data["estimated_price"] > data["base_price"]


@pytest.mark.asyncio
async def test_get_pool_reports_members_and_detour(client: AsyncClient):
    first = (await client.post("/api/v1/rides", json=_ride_body())).json()
    await client.post(
        "/api/v1/rides",
        json=_ride_body(passenger_id=2, dropoff={"lat": 28.64, "lng": 77.19}),
    )

    resp = await client.get(f"/api/v1/pools/{first['pool_id']}")
    assert resp.status_code == 200
    pool = resp.json()
    assert pool["status"] == "forming"
    assert pool["seats_occupied"] == len(pool["ride_ids"]) == 2
    assert [r["passenger_id"] for r in pool["rides"]] == [1, 2]
    assert 0 < pool["detour_km"] <= pool["max_detour_km"]
    assert pool["is_expired"] is False
    assert pool["bounding_box"]["max_lat"] == 28.64


@pytest.mark.asyncio
async def test_get_nonexistent_pool_returns_404(client: AsyncClient):
    resp = await client.get("/api/v1/pools/4242")
    assert resp.status_code == 404
    assert resp.json()["pool_id"] == 4242


@pytest.mark.asyncio
async def test_pool_lifecycle_over_http(client: AsyncClient):
    ride = (await client.post("/api/v1/rides", json=_ride_body())).json()
    url = f"/api/v1/pools/{ride['pool_id']}/status"

    for status in ("confirmed", "in_progress"):
        resp = await client.patch(url, json={"status": status})
        assert resp.status_code == 200
        assert resp.json()["status"] == status

    resp = await client.patch(
        url,
        json={"status": "completed", "actual_distances_km": {str(ride["id"]): 20.0}},
    )
    assert resp.status_code == 200
    member = resp.json()["rides"][0]
    assert member["status"] == "completed"
    assert member["actual_price"] > member["estimated_price"]


@pytest.mark.asyncio
async def test_illegal_pool_transition_returns_409(client: AsyncClient):
    ride = (await client.post("/api/v1/rides", json=_ride_body())).json()
    resp = await client.patch(
        f"/api/v1/pools/{ride['pool_id']}/status", json={"status": "completed"}
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_forming_pools_listing(client: AsyncClient):
    await client.post("/api/v1/rides", json=_ride_body())
    await client.post(
        "/api/v1/rides", json=_ride_body(passenger_id=2, pickup={"lat": 28.70, "lng": 77.30})
    )

    resp = await client.get("/api/v1/admin/forming-pools")
    assert resp.status_code == 200
    pools = resp.json()
    assert len(pools) == 2
    assert all(p["status"] == "forming" for p in pools)
