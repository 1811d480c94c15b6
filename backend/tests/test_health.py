from fastapi.testclient import TestClient

from dealdesk.main import app


def test_health_endpoint() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "environment": "test"}


def test_ready_endpoint_checks_database_and_storage() -> None:
    with TestClient(app) as client:
        response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["checks"]["db"] == {"ok": True, "backend": "sqlite", "opportunities": 0}
    assert payload["checks"]["storage"] == {"ok": True, "backend": "local"}
    assert payload["checks"]["ai_gateway"] == {"configured": True}
    assert payload["checks"]["webhooks"] == {"upload": True, "artifact": True}


def test_root_reports_service_name() -> None:
    with TestClient(app) as client:
        response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "dealdesk-backend"


def test_cors_preflight_allows_any_origin() -> None:
    with TestClient(app) as client:
        response = client.options(
            "/functions/generate-dsp",
            headers={
                "Origin": "https://app.example.org",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            },
        )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_ready_reports_unusable_storage(isolated_settings, tmp_path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied", encoding="utf-8")
    with TestClient(app) as client:
        isolated_settings.storage_root = str(blocker)
        response = client.get("/ready")
    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "not_ready"
    assert payload["checks"]["storage"]["ok"] is False
    assert payload["checks"]["db"]["ok"] is True
