from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.main import create_app
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware


def test_rate_limit_headers_middleware():
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)

    @app.get("/limited")
    async def limited(request: Request):
        request.state.rate_limit_info = {
            "allowed": True,
            "limit": 10,
            "remaining": 9,
            "retry_after": None,
        }
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/limited")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "Retry-After" not in response.headers
    assert "X-RateLimit-Reset" not in response.headers


def test_fourth_start_in_window_is_rejected(build):
    container = build(RATE_LIMIT_MAX=3)

    with TestClient(create_app(container)) as client:
        for _ in range(3):
            ok = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})
            assert ok.status_code == 200

        response = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})

    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.headers["X-RateLimit-Remaining"] == "0"
    detail = response.json()["detail"]
    assert detail["error"] == "rate_limit_exceeded"
    assert detail["retry_after"] > 0


def test_identities_are_limited_separately(build):
    container = build(RATE_LIMIT_MAX=1)

    with TestClient(create_app(container)) as client:
        first = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})
        second = client.post("/api/recycle/session/start", json={"email": "bob@example.com"})
        third = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert third.status_code == 429


def test_session_routes_count_against_session_owner(build):
    container = build(RATE_LIMIT_MAX=2)

    with TestClient(create_app(container)) as client:
        session_id = client.post(
            "/api/recycle/session/start", json={"email": "alice@example.com"}
        ).json()["session_id"]
        client.post(f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"})
        response = client.post(f"/api/recycle/session/{session_id}/bin", json={"barcode": "TC001"})

    assert response.status_code == 429


def test_rate_limit_can_be_disabled(build):
    container = build(RATE_LIMIT_MAX=1, RATE_LIMIT_ENABLED=False)

    with TestClient(create_app(container)) as client:
        for _ in range(3):
            response = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers
