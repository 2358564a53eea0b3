import json

from fastapi.testclient import TestClient

from app.main import create_app

FRAMES = json.dumps(["data:image/jpeg;base64,AAAA", "data:image/jpeg;base64,BBBB"])


def _start(client, email="alice@example.com"):
    response = client.post("/api/recycle/session/start", json={"email": email})
    assert response.status_code == 200
    return response.json()["session_id"]


def _to_video_step(client, email="alice@example.com", bin_barcode="TC001"):
    session_id = _start(client, email)
    assert client.post(
        f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"}
    ).status_code == 200
    assert client.post(
        f"/api/recycle/session/{session_id}/bin", json={"barcode": bin_barcode}
    ).status_code == 200
    return session_id


def _upload_video(client, session_id, content=b"clip-bytes", frames=FRAMES):
    data = {"frames": frames} if frames is not None else {}
    return client.post(
        f"/api/recycle/session/{session_id}/video",
        files={"video": ("clip.webm", content, "video/webm")},
        data=data,
    )


def test_start_session_response_shape(client):
    response = client.post("/api/recycle/session/start", json={"email": "alice@example.com"})

    body = response.json()
    assert body["step"] == "product"
    assert body["expires_in_ms"] == 60_000
    assert len(body["session_id"]) == 32
    assert response.headers["X-Request-ID"]


def test_start_session_requires_email(client):
    response = client.post("/api/recycle/session/start", json={"email": ""})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_request"


def test_barcode_steps(client):
    session_id = _start(client)

    product = client.post(f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"})
    assert product.json() == {"ok": True, "step": "bin", "product_barcode": "015665624058"}

    bin_step = client.post(f"/api/recycle/session/{session_id}/bin", json={"barcode": "TC001"})
    assert bin_step.json() == {"ok": True, "step": "video", "bin_barcode": "TC001"}


def test_wrong_step_is_conflict(client):
    session_id = _start(client)

    response = client.post(f"/api/recycle/session/{session_id}/bin", json={"barcode": "TC001"})

    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Invalid step. Expected bin, got product"


def test_unknown_session_is_not_found(client):
    response = client.post("/api/recycle/session/nope/product", json={"barcode": "015665624058"})

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "session_not_found"


def test_expired_session_is_gone_then_not_found(client, clock):
    session_id = _start(client)
    clock.advance_ms(60_001)

    first = client.post(f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"})
    second = client.post(f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"})

    assert first.status_code == 410
    assert second.status_code == 404


def test_video_requires_frames(client):
    session_id = _to_video_step(client)

    response = _upload_video(client, session_id, frames=None)

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "missing_frames"


def test_video_requires_file(client):
    session_id = _to_video_step(client)

    response = client.post(f"/api/recycle/session/{session_id}/video", data={"frames": FRAMES})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "missing_video"


def test_oversized_video_is_rejected(build):
    container = build(MAX_VIDEO_BYTES=8)
    with TestClient(create_app(container)) as client:
        session_id = _to_video_step(client)
        response = _upload_video(client, session_id, content=b"0123456789")

    assert response.status_code == 413


def test_verified_video_response(client, container):
    session_id = _to_video_step(client)

    response = _upload_video(client, session_id)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["verified"] is True
    assert body["confidence"] == 0.8
    assert body["points_awarded"] == 50
    assert body["verdict"]["pass"] is True
    assert body["video_url"].startswith("/uploads/")


def test_cooldown_is_429_with_scope(client, clock):
    first = _to_video_step(client)
    assert _upload_video(client, first, content=b"clip-1").status_code == 200

    clock.advance_ms(1_000)
    second = _to_video_step(client, bin_barcode="TC002")
    response = _upload_video(client, second, content=b"clip-2")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "29"
    detail = response.json()["detail"]
    assert detail["error"] == "cooldown_active"
    assert detail["scope"] == "user"
    assert detail["retry_after"] == 29


def test_duplicate_video_is_409(client, model_client):
    model_client.reply_with({"confidence": 0.2})
    first = _to_video_step(client)
    assert _upload_video(client, first, content=b"same").status_code == 200

    second = _to_video_step(client, email="bob@example.com", bin_barcode="TC002")
    response = _upload_video(client, second, content=b"same")

    assert response.status_code == 409
    assert response.json()["detail"]["duplicate"] is True


def test_uploads_are_served_from_container_upload_dir(build, tmp_path):
    (tmp_path / "clip.webm").write_bytes(b"clip")
    container = build(UPLOAD_DIR=str(tmp_path))

    with TestClient(create_app(container)) as client:
        response = client.get("/uploads/clip.webm")

    assert response.status_code == 200
    assert response.content == b"clip"
