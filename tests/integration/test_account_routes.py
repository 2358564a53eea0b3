def _upload_image(client, content=b"png-bytes", item_type="can", email="alice@example.com"):
    return client.post(
        "/api/upload",
        files={"image": ("bottle.png", content, "image/png")},
        data={"item_type": item_type, "email": email},
    )


def test_unknown_user_is_404(client):
    response = client.get("/api/user/nobody@example.com")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "user_not_found"


def test_upload_awards_item_type_points(client, model_client):
    response = _upload_image(client, item_type="can")

    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is True
    assert body["points_awarded"] == 20
    assert body["new_points"] == 20
    assert body["note"] == "bottle dropped into blue bin"

    frames = model_client.completions.calls[0]["messages"][1]["content"]
    assert frames[1]["image_url"]["url"].startswith("data:image/png;base64,")

    user = client.get("/api/user/alice@example.com").json()["user"]
    assert user["points"] == 20


def test_unverified_upload_awards_nothing(client, model_client):
    model_client.reply_with({"bin_visible": False, "confidence": 0.9})

    body = _upload_image(client, item_type="bottle").json()

    assert body["verified"] is False
    assert body["points_awarded"] == 0
    assert body["new_points"] is None


def test_duplicate_image_is_409(client):
    assert _upload_image(client, content=b"same").status_code == 200

    response = _upload_image(client, content=b"same", email="bob@example.com")

    assert response.status_code == 409


def test_upload_requires_email(client):
    response = client.post(
        "/api/upload",
        files={"image": ("bottle.png", b"x", "image/png")},
        data={"item_type": "can"},
    )

    assert response.status_code == 400


def test_history_lists_both_event_kinds(client):
    _upload_image(client, content=b"img-1", item_type="food")

    session_id = client.post(
        "/api/recycle/session/start", json={"email": "alice@example.com"}
    ).json()["session_id"]
    client.post(f"/api/recycle/session/{session_id}/product", json={"barcode": "015665624058"})
    client.post(f"/api/recycle/session/{session_id}/bin", json={"barcode": "TC001"})
    client.post(
        f"/api/recycle/session/{session_id}/video",
        files={"video": ("clip.webm", b"clip", "video/webm")},
        data={"frames": '["data:image/jpeg;base64,AAAA"]'},
    )

    history = client.get("/api/history/alice@example.com").json()

    assert len(history["disposal_events"]) == 1
    assert history["disposal_events"][0]["item_type"] == "food"
    assert len(history["recycle_events"]) == 1
    assert history["recycle_events"][0]["product_barcode"] == "015665624058"


def test_redeem_points(client):
    for n in range(3):
        _upload_image(client, content=f"bottle-{n}".encode(), item_type="bottle")

    response = client.post("/api/redeem", json={"email": "alice@example.com", "dollars": 1})

    assert response.status_code == 200
    assert response.json() == {"success": True, "new_points": 50}


def test_redeem_insufficient_points(client):
    _upload_image(client, item_type="can")

    response = client.post("/api/redeem", json={"email": "alice@example.com", "dollars": 1})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "insufficient_points"
    assert detail["available"] == 20
