"""Tests for the logging session endpoints."""

from fastapi.testclient import TestClient

from nutrilog.api.app import create_app


def test_health(container) -> None:
    app = create_app(container)
    client = TestClient(app)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_voice_item_is_confirmed_and_logged(container) -> None:
    app = create_app(container)

    with TestClient(app) as client:
        opened = client.post("/sessions/user-1")
        assert opened.status_code == 200
        assert opened.json()["foods"] == []

        routed = client.post(
            "/sessions/user-1/items",
            json={"source": "voice", "items": [{"name": "apple"}]},
        )
        assert routed.status_code == 200
        state = routed.json()
        assert state["state"] == "confirming"
        assert state["overlay"] == "confirm"
        assert state["current_item"]["name"] == "1 Medium Apple"
        assert state["current_item"]["source_label"] == "generic"

        confirmed = client.post(
            "/sessions/user-1/confirm", json={"name": "Green Apple"}
        )
        assert confirmed.status_code == 200
        body = confirmed.json()
        assert body["entry"]["name"] == "Green Apple"
        assert body["entry"]["nutrition"]["calories"] == 95
        assert body["state"]["state"] == "all_complete"

        day = client.get("/sessions/user-1/day").json()
        assert day["totals"]["calories"] == 95

        removed = client.delete(f"/sessions/user-1/foods/{body['entry']['id']}")
        assert removed.json()["totals"]["calories"] == 0

        assert client.delete("/sessions/user-1").json() == {"status": "closed"}


def test_unenriched_photo_items_are_rejected(container) -> None:
    app = create_app(container)

    with TestClient(app) as client:
        client.post("/sessions/user-1")
        response = client.post(
            "/sessions/user-1/items",
            json={"source": "photo", "items": [{"name": "Soup"}]},
        )

    assert response.status_code == 409
    assert response.json()["detail"] == "enrichment-incomplete"


def test_review_flow_and_cancel(container) -> None:
    app = create_app(container)
    items = [
        {"name": "Salad", "enrichment_complete": True, "ingredients": ["lettuce"]},
        {"name": "Soup", "enrichment_complete": True, "ingredients": ["water"]},
    ]

    with TestClient(app) as client:
        client.post("/sessions/user-1")
        state = client.post(
            "/sessions/user-1/items", json={"source": "photo", "items": items}
        ).json()
        assert state["state"] == "reviewing"
        assert len(state["pending_queue"]) == 2

        state = client.delete("/sessions/user-1/review/1").json()
        assert len(state["pending_queue"]) == 1

        state = client.post("/sessions/user-1/review/start").json()
        assert state["state"] == "confirming"

        state = client.post("/sessions/user-1/cancel").json()
        assert state["state"] == "idle"
        assert state["pending_queue"] == []


def test_hydration_and_supplements(container) -> None:
    app = create_app(container)

    with TestClient(app) as client:
        client.post("/sessions/user-1")
        day = client.post(
            "/sessions/user-1/hydration", json={"volume_ml": 250}
        ).json()
        assert day["hydration_ml"] == 250

        day = client.post(
            "/sessions/user-1/supplements",
            json={"name": "Vitamin D", "dosage": 1000, "unit": "IU"},
        ).json()
        assert day["supplement_count"] == 1

        invalid = client.post("/sessions/user-1/hydration", json={"volume_ml": 0})
        assert invalid.status_code == 422


def test_unknown_session_returns_404(container) -> None:
    app = create_app(container)
    client = TestClient(app)

    assert client.get("/sessions/nobody/state").status_code == 404
    assert client.delete("/sessions/nobody").status_code == 404
