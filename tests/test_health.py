# tests/test_health.py
from fastapi.testclient import TestClient

from duet_chat import __version__


def test_root_describes_the_hub(client: TestClient) -> None:
    """The root endpoint names the hub and its WebSocket path."""
    r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["version"] == __version__
    assert body["websocket"] == "/ws/"


def test_health_reports_running_hub(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
